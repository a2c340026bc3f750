"""blogbot - research-backed blog post generator

Simple CLI for generating a post without running the web server.
"""

import argparse
import asyncio
import sys

from pydantic import ValidationError

from blogbot.agents.orchestrator import build_orchestrator
from blogbot.config import settings
from blogbot.models.schemas import GenerateRequest
from blogbot.services.cache import build_cache


async def run_generation(request: GenerateRequest) -> int:
    """Stream pipeline progress to stdout. Returns a process exit code."""
    print(f"Topic: {request.topic}")
    print("-" * 50)

    cache = build_cache(settings)
    orchestrator = build_orchestrator(settings, cache=cache)
    exit_code = 1
    try:
        async for event in orchestrator.stream_post(request):
            event_type = event.event.value
            data = event.data

            if event_type == "status":
                extra = " (cached)" if data.get("cached") else ""
                print(f"[~] {data.get('phase')}: {data.get('message')}{extra}")

            elif event_type == "done":
                print(f"\n[*] {data.get('title')}")
                print(f"   Slug: {data.get('slug')}")
                print(f"   Time: {data.get('generation_time_ms')}ms")
                print(f"   Saved to: {data.get('file_path')}")
                exit_code = 0

            elif event_type == "error":
                print(f"\n[!] Error ({data.get('phase', 'unknown')}): {data.get('message', 'Unknown error')}")
    finally:
        await cache.close()
    return exit_code


def main():
    parser = argparse.ArgumentParser(description="blogbot post generator")
    parser.add_argument("topic", help="Topic to research and write about")
    parser.add_argument(
        "--question", "-q",
        action="append",
        required=True,
        dest="questions",
        help="Question the post must answer (repeatable)",
    )
    parser.add_argument("--max-sources", type=int, help="Number of sources to research (3-10)")
    parser.add_argument("--audience", help="Intended audience")
    parser.add_argument("--tone", help="Writing tone")
    parser.add_argument("--llm", action="store_true", help="Use the LLM for analysis and writing")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")

    args = parser.parse_args()

    try:
        request = GenerateRequest(
            topic=args.topic,
            target_questions=args.questions,
            max_sources=args.max_sources,
            audience=args.audience,
            tone=args.tone,
            use_llm=args.llm,
            model=args.model,
        )
    except ValidationError as exc:
        parser.error(str(exc))

    sys.exit(asyncio.run(run_generation(request)))


if __name__ == "__main__":
    main()
