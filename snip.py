import argparse
import asyncio
import logging
import sys

from snip.snip_config import SessionConfig
from snip.snip_datatypes import SnipError
from snip.snip_runtime import SessionRunner

# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)

def print_report(report):
    """Print a submission's transcript entries, skipping the echo."""
    for entry in report.entries:
        match entry.kind:
            case 'echo':
                continue
            case 'output':
                sys.stdout.write(entry.text if entry.text.endswith("\n") else entry.text + "\n")
            case 'value':
                print(entry.text)
            case _:
                print(entry.text, file=sys.stderr)

async def read_snippet() -> str:
    """Read one snippet; a line ending in ':' or '\\' continues until a blank line."""
    raw = await ainput(">>> ")
    if raw == "":
        raise EOFError
    lines = [raw.rstrip("\n")]
    if not lines[0].rstrip().endswith((":", "\\")):
        return lines[0]
    while True:
        more = await ainput("... ")
        if more == "" or not more.strip():
            break
        lines.append(more.rstrip("\n"))
    return "\n".join(lines)

async def run_script_file(runner: SessionRunner, file_path: str):
    """Run a script file as one submission and exit with appropriate status."""
    try:
        report = await runner.run_file(file_path)
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    print_report(report)
    if 'error' in report.kinds() or 'fault' in report.kinds():
        raise SystemExit(1)

def parse_args(argv):
    parser = argparse.ArgumentParser(prog="snip", description="Incremental Python snippet REPL.")
    parser.add_argument("script", nargs="?", help="run this file instead of starting the REPL")
    parser.add_argument("--config", help="session config (YAML)")
    parser.add_argument("--log-level", default="WARNING")
    return parser.parse_args(argv)

async def main(argv=None):
    """Run a script file when provided, otherwise start the interactive REPL."""
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=args.log_level.upper())

    try:
        config = SessionConfig.from_yaml(args.config) if args.config else SessionConfig()
        runner = SessionRunner(config)
    except SnipError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(2)

    if args.script:
        await run_script_file(runner, args.script)
        return

    print("SNIP REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    # REPL Loop
    while True:
        try:
            snippet = await read_snippet()
            if snippet.strip() == "exit":
                break
            report = await runner.submit(snippet)
            print_report(report)
            if runner.terminated:
                print("Session terminated.", file=sys.stderr)
                break
        except EOFError:
            print("\nExiting.")
            break

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")
