"""Extract an article from the command line.

    python tools/extract_article.py example.com/post --providers raw_proxy,direct
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

if __package__ in {None, ""}:
    sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from audicle.services.exceptions import AllProvidersFailed, AudicleError  # noqa: E402
from audicle.services.extraction import extract_article  # noqa: E402
from audicle.services.providers import build_provider_chain  # noqa: E402
from audicle.utils.logging_config import setup_logging  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Extract readable article content from a URL.")
    parser.add_argument("url", help="Article URL; the scheme may be omitted.")
    parser.add_argument(
        "--providers",
        help="Comma separated provider order (default: PROVIDER_ORDER or the built-in chain).",
    )
    parser.add_argument(
        "--text", action="store_true", help="Print plain text instead of JSON."
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    chain = None
    if args.providers:
        names = [name.strip() for name in args.providers.split(",") if name.strip()]
        chain = build_provider_chain(names)

    try:
        article = extract_article(args.url, chain)
    except AllProvidersFailed as exc:
        print(exc.user_message, file=sys.stderr)
        for cause in exc.causes:
            print(f"  {cause.provider}: {cause.kind} ({cause.message})", file=sys.stderr)
        return 1
    except AudicleError as exc:
        print(exc.user_message, file=sys.stderr)
        return 1

    if args.text:
        print(article.title)
        print()
        print(article.plain_text)
    else:
        print(json.dumps(article.to_dict(), indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
