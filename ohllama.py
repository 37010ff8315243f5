#!/usr/bin/env python3

"""
ohllama.py

Sends a prompt, optionally with piped stdin and a named system prompt from
~/.ohllama/systems/, to a local Ollama server and prints the response.

    git diff | ohllama "write a commit message"
    ohllama -s copywriter "a tagline for a coffee shop"
    ohllama --list
"""
import sys
import logging
import argparse
from collections import namedtuple

import requests

from ohllama_config import ConfigError, resolve_paths, setup, load_config

__version__ = "0.1.0"

OLLAMA_ENDPOINT = "/api/generate"
SYSTEM_LABEL = "System:"
USER_LABEL = "User:"
DEFAULT_SYSTEM = "default"
SYSTEM_SUFFIX = ".md"
SERVER_ERROR_MESSAGE = "unable to request model server, is it running?"

Response = namedtuple("Response", ["text", "error"])


class SystemPromptError(Exception):
    pass


class MissingSystemError(SystemPromptError):
    pass


def read_system_file(path):
    try:
        return path.read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        raise SystemPromptError(f"Failed reading system file {path}: {e}") from e


def load_system(systems_dir, name=None):
    name = name or DEFAULT_SYSTEM
    path = systems_dir / f"{name}{SYSTEM_SUFFIX}"
    # only plain names, "-s ../x" must not escape the systems dir
    if "/" in name or "\\" in name or name in (".", "..") or not path.is_file():
        raise MissingSystemError(f"Missing system, no file found: {path}")
    return read_system_file(path)


def list_system_prompts(systems_dir, out=None):
    out = out or sys.stdout
    for path in sorted(systems_dir.iterdir()):
        if not path.is_file():
            continue
        out.write(f"System: {path.name}\n")
        out.write(f"{read_system_file(path)}\n\n")
    out.flush()


def load_stdin(stream=None):
    """Return piped input as newline-joined lines, or "" when stdin is a terminal."""
    stream = stream or sys.stdin
    if stream is None or stream.isatty():
        return ""
    # bytes from the real stdin; undecodable input becomes U+FFFD rather than failing
    raw = stream.buffer.read() if hasattr(stream, "buffer") else stream.read()
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    lines = raw.split("\n")
    if lines[-1] == "":
        lines.pop()
    return "\n".join(line.removesuffix("\r") for line in lines)


def build_prompt(system_prompt, user_prompt, stdin_text=""):
    return f"{SYSTEM_LABEL} {system_prompt}.\n{USER_LABEL} {user_prompt}{stdin_text}"


def ask_ollama(config, prompt, model=None):
    url = f"{config.url.rstrip('/')}:{config.port}{OLLAMA_ENDPOINT}"
    payload = {
        "model": model or config.model,
        "prompt": prompt,
        "stream": False
    }
    logging.debug(f"POST {url} model={payload['model']} prompt_chars={len(prompt)}")

    try:
        response = requests.post(url, json=payload, timeout=config.timeout)
    except requests.exceptions.RequestException as e:
        return Response(None, str(e))

    if not response.ok:
        detail = response.reason or ""
        try:
            detail = response.json().get("error", detail)
        except (ValueError, AttributeError):
            pass
        return Response(None, f"HTTP {response.status_code} {detail}".rstrip())

    try:
        data = response.json()
    except ValueError as e:
        return Response(None, f"Invalid JSON from server: {e}")
    if not isinstance(data, dict) or not isinstance(data.get("response"), str):
        return Response(None, f"Unexpected response format: {str(data)[:200]}")
    return Response(data["response"], None)


def output_to_stdout(text, out=None):
    out = out or sys.stdout
    out.write(text)
    out.flush()


def build_parser():
    parser = argparse.ArgumentParser(
        prog="ohllama",
        description="Ask a local Ollama server, with a system prompt from ~/.ohllama/systems/ and optional piped stdin.")
    parser.add_argument('-l', '--list', action='store_true', help="List available system prompts")
    parser.add_argument('-s', '--system', metavar='SYSTEM',
                        help="System prompt name, e.g. -s copywriter for ~/.ohllama/systems/copywriter.md")
    parser.add_argument('-m', '--model', help="Model to use instead of the configured one")
    parser.add_argument('-v', '--verbose', action='store_true', help="Debug logging to stderr")
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument('user_prompt', nargs='?', help="User prompt")
    return parser


def run(args, stdin=None, out=None):
    """Run one invocation; raises ConfigError, SystemPromptError or RuntimeError."""
    paths = resolve_paths()
    if setup(paths):
        logging.info(f"Initialized {paths.base}")
    config = load_config(paths)

    if args.list:
        list_system_prompts(paths.systems, out)
        return

    system_prompt = load_system(paths.systems, args.system)
    prompt = build_prompt(system_prompt, args.user_prompt, load_stdin(stdin))

    result = ask_ollama(config, prompt, model=args.model)
    if result.error is not None:
        raise RuntimeError(f"{SERVER_ERROR_MESSAGE}: {result.error}")
    output_to_stdout(result.text, out)


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(stream=sys.stderr, level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(message)s')

    if not args.list and args.user_prompt is None:
        parser.error("Missing User prompt!")

    try:
        run(args)
    except (ConfigError, SystemPromptError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
