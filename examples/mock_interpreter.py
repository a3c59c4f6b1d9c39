#!/usr/bin/env python3
"""Minimal working example of code-loop with mocked model responses.

This example demonstrates code-loop WITHOUT requiring an API key or a
local model. A mock ModelAdaptor writes a buggy snippet, fixes it after
seeing the error, then explains the result. The code itself really runs
in a subprocess sandbox.

This is useful for:
- Testing without API costs
- Understanding the execute-and-recover flow
- Running in offline environments

Run:
    python examples/mock_interpreter.py
"""

import os
import sys

# Ensure the project root is in the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from code_loop import (
    CodeInterpreter,
    ModelAdaptor,
    StreamChunk,
    SubprocessSandbox,
    TurnCallbacks,
    UsageStats,
)


class MockModelAdaptor(ModelAdaptor):
    """Mock model adaptor that streams predefined responses word by word.

    This demonstrates how to implement a custom ModelAdaptor.
    Each call streams the next response in the script.
    """

    def __init__(self):
        self.call_count = 0
        self.responses = [
            # First answer: a typo the sandbox will reject
            "Let me compute that.\n\n"
            "```python\n"
            "numbers = range(1, 11)\n"
            "total = sum(n * n for n in numbrs)\n"
            "print('Sum of squares:', total)\n"
            "total\n"
            "```",
            # Recovery: the model sees the NameError and fixes it
            "Sorry about that, here is the fixed version.\n\n"
            "```python\n"
            "numbers = range(1, 11)\n"
            "total = sum(n * n for n in numbers)\n"
            "print('Sum of squares:', total)\n"
            "total\n"
            "```",
            # Explanation of the output
            "The sum of the squares of 1 through 10 is 385. The code squares "
            "each number in the range and adds them together.",
        ]

    async def stream(self, messages, include_usage=True, **kwargs):
        if self.call_count >= len(self.responses):
            text = "(Mock adaptor ran out of predefined responses)"
        else:
            text = self.responses[self.call_count]
        self.call_count += 1

        words = text.split(" ")
        for i, word in enumerate(words):
            yield StreamChunk(delta=word if i == 0 else " " + word)

        if include_usage:
            yield StreamChunk(
                usage=UsageStats(
                    prompt_tokens=sum(len(m.content.split()) for m in messages),
                    completion_tokens=len(words),
                    decode_tokens_per_second=42.0,
                )
            )


class PrintingCallbacks(TurnCallbacks):
    """Print each progress report as it arrives."""

    async def on_code_output_update(self, output):
        print(f"\n📤 Code output: {output!r}")

    async def on_error_update(self, has_error):
        print(f"\n{'❌ Execution failed' if has_error else '✅ Error cleared'}")

    async def on_usage_update(self, usage):
        print(f"   [{usage.completion_tokens} tokens, {usage.decode_tokens_per_second} tok/s]")


def print_header(text: str, width: int = 70) -> None:
    """Print a formatted header."""
    print(f"\n{'=' * width}")
    print(f"  {text}")
    print(f"{'=' * width}\n")


def print_turn_trace(turn) -> None:
    print_header("Turn Trace")
    print(f"  Question: {turn.input}")
    print(f"  Outcome: {turn.outcome.value}")
    print(f"  States: {' -> '.join(s.value for s in turn.history)}")
    print(f"  Recovery attempts: {turn.recovery_attempts}")
    print(f"  Executions: {len(turn.executions)}")
    for record in turn.executions:
        status = "ok" if record.succeeded else "failed"
        print(f"    #{record.attempt} {status}")

    print("\n  Conversation:")
    for i, msg in enumerate(turn.conversation, 1):
        preview = msg.content.replace("\n", " ")[:70]
        print(f"    {i}. {msg.role.upper()}: {preview}")

    print(f"\n  Explanation: {turn.explanation}")


def main() -> int:
    print_header("🐢 code-loop Minimal Example (Mocked)")

    interpreter = CodeInterpreter(
        model=MockModelAdaptor(),
        sandbox=SubprocessSandbox(timeout=10.0),
        max_recovery_attempts=2,
    )

    @interpreter.hook("on_execution_error")
    async def show_error(event):
        last_line = event.error_message.strip().splitlines()[-1]
        print(f"\n[hook] attempt {event.attempt} failed: {last_line}")

    turn = interpreter.run(
        "What is the sum of the squares of 1 to 10?", PrintingCallbacks()
    )
    print_turn_trace(turn)

    return 0 if turn.outcome.value == "explained" else 1


if __name__ == "__main__":
    sys.exit(main())
