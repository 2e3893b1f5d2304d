#!/usr/bin/env python3
"""
Run one requirements analysis against a running server from the terminal.

Progress is printed as it arrives; a clarifying question from the server is
read from stdin. Exits non-zero if the server reports an error.

Usage:
    python scripts/analyze_requirements.py requirements.txt
    python scripts/analyze_requirements.py --url ws://localhost:8080/ws requirements.txt
"""

import asyncio
import sys
from pathlib import Path

from reqtest.analysis_session import AnalysisSession
from reqtest.config import WS_URL, configure_logging
from reqtest.ws_client import AnalysisWSClient

POLL_INTERVAL = 0.2  # seconds


async def analyze(requirements: str, url: str) -> int:
    session = AnalysisSession(AnalysisWSClient(url))
    await session.start()
    status = await session.start_analysis(requirements)
    print(f"Analysis request {status.value}")

    last_progress = None
    answered = None
    try:
        while session.results is None and session.error is None:
            await asyncio.sleep(POLL_INTERVAL)
            if session.progress is not None and session.progress != last_progress:
                last_progress = session.progress
                print(f"[{last_progress.get('stage')}] {last_progress.get('progress')}% "
                      f"{last_progress.get('message') or ''}")
            if session.question and session.question != answered:
                answered = session.question
                answer = await asyncio.to_thread(input, f"\n{session.question}\n> ")
                await session.answer_question(answer)
    finally:
        await session.close("done")

    if session.error:
        print(f"Error: {session.error}", file=sys.stderr)
        return 1
    print("\nTest cases:")
    for insight in session.results.get("insights", []):
        print(f"  {insight}")
    return 0


def main():
    import argparse
    parser = argparse.ArgumentParser(description="Analyze a requirements document")
    parser.add_argument("--url", default=WS_URL, help=f"Analysis server WebSocket URL (default: {WS_URL})")
    parser.add_argument("path", help="Requirements text file")
    args = parser.parse_args()

    configure_logging("WARNING")
    requirements = Path(args.path).read_text(encoding="utf-8")
    sys.exit(asyncio.run(analyze(requirements, args.url)))


if __name__ == "__main__":
    main()
