from code_loop.extract import extract_code


class TestExtractCode:
    def test_no_fence_returns_none(self):
        assert extract_code("The answer is 4.") is None

    def test_empty_text(self):
        assert extract_code("") is None

    def test_single_block(self):
        text = "Here you go:\n```python\nprint(2+2)\n```\nDone."
        assert extract_code(text) == "print(2+2)"

    def test_multiline_body_preserved(self):
        text = "```python\nx = 1\n\ny = 2\nprint(x + y)\n```"
        assert extract_code(text) == "x = 1\n\ny = 2\nprint(x + y)"

    def test_inner_indentation_preserved(self):
        text = "```python\nfor i in range(3):\n    print(i)\n```"
        assert extract_code(text) == "for i in range(3):\n    print(i)"

    def test_first_block_wins(self):
        text = "```python\nprint(1)\n```\nand\n```python\nprint(2)\n```"
        assert extract_code(text) == "print(1)"

    def test_untagged_fence_ignored(self):
        text = "```\nprint(1)\n```"
        assert extract_code(text) is None

    def test_other_language_ignored(self):
        text = "```bash\nls\n```\n```python\nprint('hi')\n```"
        assert extract_code(text) == "print('hi')"

    def test_similar_tag_not_matched(self):
        assert extract_code("```pythonic\nprint(1)\n```") is None

    def test_aliases_accepted(self):
        assert extract_code("```py\nprint(1)\n```") == "print(1)"
        assert extract_code("```Python3\nprint(1)\n```") == "print(1)"

    def test_no_trailing_newline_before_closing_fence(self):
        assert extract_code("```python\nprint(1)```") == "print(1)"

    def test_closing_fence_at_end_of_text(self):
        assert extract_code("```python\nprint(1)\n```") == "print(1)"

    def test_unterminated_block_is_absent(self):
        assert extract_code("```python\nprint(1)\nprint(2)") is None

    def test_blank_block_is_absent(self):
        assert extract_code("```python\n   \n```") is None

    def test_crlf_line_endings(self):
        assert extract_code("```python\r\nprint(1)\r\n```") == "print(1)"

    def test_indented_fences(self):
        text = "1. Run this:\n   ```python\n   print(1)\n   ```"
        assert extract_code(text) == "   print(1)"

    def test_other_language_requested(self):
        text = "```python\nprint(1)\n```\n```sql\nSELECT 1\n```"
        assert extract_code(text, language="sql") == "SELECT 1"
