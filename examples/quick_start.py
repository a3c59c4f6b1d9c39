"""Minimal code-loop example with a local model. Requires a running Ollama server."""

import asyncio

from code_loop import (
    CodeInterpreter,
    InterpreterConfig,
    OllamaAdaptor,
    SubprocessSandbox,
    TurnEventKind,
)


async def main():
    config = InterpreterConfig.from_env()

    model = OllamaAdaptor(model="qwen2.5-coder:1.5b")
    model.set_progress_callback(lambda text: print(f"[load] {text}"))
    await model.load()

    interpreter = CodeInterpreter(
        model=model,
        sandbox=SubprocessSandbox.from_config(config),
        config=config,
    )

    @interpreter.hook("after_execution")
    async def on_execution(event):
        status = "ok" if event.record.succeeded else "failed"
        print(f"[hook] execution {status} in {event.execution_time_ms:.0f}ms")

    channel = interpreter.open_turn("How many prime numbers are there below 1000?")
    async for event in channel:
        if event.kind == TurnEventKind.CODE_OUTPUT:
            print(f"Output: {event.payload}")
        elif event.kind == TurnEventKind.EXPLANATION and event.payload:
            print(f"\rExplanation: {event.payload}", end="", flush=True)

    turn = await channel.wait()
    print(f"\nOutcome: {turn.outcome.value}")


if __name__ == "__main__":
    asyncio.run(main())
