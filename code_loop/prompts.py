"""Prompt templates sent to the model during a turn."""

SYSTEM_PROMPT = """You are a Python coding assistant with access to a Python interpreter. The user will ask you a question and your job is to write Python code that answers it.

When solving problems:
1. Think step by step before writing any code so that the code answers the question correctly
2. Use print() to inspect variables and intermediate results
3. The value of the last expression in your code is returned to you along with the printed output
4. Only use the Python standard library unless the question says otherwise

Respond with a single markdown code block starting with ```python and ending with ```. The code must run without any changes."""

EXPLANATION_PROMPT = """Awesome! I ran your code and it helped me answer my question. It returned {result} and the printed output: {stdout}.
Now respond to my original question using the result and the printed output, ignoring any message before this one."""

ERROR_PROMPT = """I ran your code but it failed with this error:
{error}

This is the code that failed:
```{language}
{code}
```

Fix the code and respond with the corrected version in a single ```{language} code block."""

SUCCESS_SUMMARY = "The code executed successfully with output: {output}"


def explanation_prompt(result, stdout: str) -> str:
    return EXPLANATION_PROMPT.format(result=result, stdout=stdout)


def error_prompt(error: str, code: str, language: str = "python") -> str:
    return ERROR_PROMPT.format(error=error, code=code, language=language)


def success_summary(output: str) -> str:
    return SUCCESS_SUMMARY.format(output=output or "(no output)")


def code_block(code: str, language: str = "python") -> str:
    return f"```{language}\n{code}\n```"
