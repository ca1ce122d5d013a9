import argparse
import json
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, NamedTuple, Optional

import requests
from dotenv import find_dotenv, load_dotenv

from mal_export import CATEGORIES, CATEGORY_LABELS, ExportError, LocalEntry, categorize, read_mal_export
from mangadex_client import MANGADEX_API, MANGADEX_AUTH_URL, USER_AGENT, AuthError, MangaDexClient
from title_matching import RankedCandidate, candidate_from_manga, normalize_title_tokens, rank_candidates, select_match

REQUIRED_ENV_VARS = (
    "MANGADEX_GRANT_TYPE",
    "MANGADEX_USERNAME",
    "MANGADEX_PASSWORD",
    "MANGADEX_CLIENT_ID",
    "MANGADEX_CLIENT_SECRET",
)

# Category -> MangaDex reading status
STATUS_MAP: Dict[str, str] = {
    "Reading": "reading",
    "Completed": "completed",
    "OnHold": "on_hold",
    "Dropped": "dropped",
    "PlanToRead": "plan_to_read",
}
DEFAULT_MD_STATUS = "plan_to_read"


class ConfigError(RuntimeError):
    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required environment variables: {', '.join(self.missing)}")


@dataclass
class ImporterConfig:
    grant_type: str
    username: str
    password: str
    client_id: str
    client_secret: str
    api_url: str = MANGADEX_API
    auth_url: str = MANGADEX_AUTH_URL
    user_agent: str = USER_AGENT
    request_timeout: float = 20.0
    throttle: float = 0.25
    cleanup_pause: float = 0.2
    dry_run: bool = False
    show_progress: bool = True
    debug_match: bool = False

    def credentials(self) -> Dict[str, str]:
        return {
            "grant_type": self.grant_type,
            "username": self.username,
            "password": self.password,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }


class ProcessedManga(NamedTuple):
    title: str
    id: str
    status: str


def load_config(environ: Optional[Mapping[str, str]] = None, **overrides) -> ImporterConfig:
    """Build the run config from env vars; explicit overrides win when set.

    Raises ConfigError naming every missing credential.
    """
    env = os.environ if environ is None else environ
    values: Dict[str, str] = {}
    missing: List[str] = []
    for name in REQUIRED_ENV_VARS:
        field = name[len("MANGADEX_"):].lower()
        val = overrides.pop(field, None) or env.get(name)
        if not val:
            missing.append(name)
        else:
            values[field] = val
    if missing:
        raise ConfigError(missing)
    extra = {k: v for k, v in overrides.items() if v is not None}
    return ImporterConfig(**values, **extra)


def convert_category_to_md_status(category: str) -> str:
    return STATUS_MAP.get(category, DEFAULT_MD_STATUS)


def make_client(config: ImporterConfig) -> MangaDexClient:
    return MangaDexClient(
        base_url=config.api_url,
        auth_url=config.auth_url,
        user_agent=config.user_agent,
        request_timeout=config.request_timeout,
    )


def find_match(client: MangaDexClient, title: str, debug: bool = False) -> Optional[RankedCandidate]:
    """Search MangaDex for a title and return the accepted candidate, if any."""
    _, tokens = normalize_title_tokens(title)
    print(f"  Searching for: {title}", flush=True)
    print(f"  Search tokens: {', '.join(tokens)}", flush=True)
    try:
        items = client.search_manga(",".join(tokens))
    except (requests.RequestException, ValueError) as e:
        print(f"  ERROR search failed for {title!r}: {e}", flush=True)
        return None
    ranked = rank_candidates(title, [candidate_from_manga(it) for it in items])
    if debug:
        print(f"[match debug] {len(items)} results, {len(ranked)} above inclusion filter", flush=True)
        for i, r in enumerate(ranked, 1):
            print(f"[match debug]   {i}. {r.title} ({r.similarity * 100:.1f}%) {r.id}", flush=True)
    match = select_match(ranked)
    if match is None:
        if ranked:
            print(f"  SKIP no match with sufficient similarity (best {ranked[0].title!r} {ranked[0].similarity:.2f})", flush=True)
        else:
            print("  SKIP no candidates", flush=True)
    return match


def import_entries(
    client: MangaDexClient,
    categories: Dict[str, List[LocalEntry]],
    config: ImporterConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> List[ProcessedManga]:
    """Match every entry category by category and push its reading status.

    An accepted match is recorded even if the status update fails.
    """
    processed: List[ProcessedManga] = []
    order = list(CATEGORIES) + [c for c in categories if c not in CATEGORIES]
    for category in order:
        entries = categories.get(category) or []
        print(f"\n== Processing {CATEGORY_LABELS.get(category, category)} ({len(entries)}) ==", flush=True)
        total = len(entries)
        for idx, entry in enumerate(entries, 1):
            if config.show_progress:
                print(f"[{idx}/{total}] {idx / total * 100:.1f}% - {entry.title}", flush=True)
            match = find_match(client, entry.title, debug=config.debug_match)
            if match is not None:
                md_status = convert_category_to_md_status(category)
                print(f"  OK best match: {match.title} ({match.similarity:.2f})", flush=True)
                if config.dry_run:
                    print(f"  DRY-RUN would set {match.id} -> {md_status}", flush=True)
                else:
                    try:
                        if client.update_status(match.id, md_status):
                            print(f"  OK status updated for {match.id}: {md_status}", flush=True)
                    except Exception as e:
                        print(f"  ERROR status update failed for {entry.title}: {e}", flush=True)
                processed.append(ProcessedManga(title=entry.title, id=match.id, status=category))
            sleep(config.throttle)
    return processed


def cleanup_statuses(
    client: MangaDexClient,
    processed: List[ProcessedManga],
    config: ImporterConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Clear the reading status of every processed manga. Returns how many cleared."""
    print("\n== Starting cleanup ==", flush=True)
    cleared = 0
    total = len(processed)
    for idx, manga in enumerate(processed, 1):
        try:
            print(f"[{idx}/{total}] Cleaning up: {manga.title}", flush=True)
            if config.dry_run:
                print(f"  DRY-RUN would clear {manga.id}", flush=True)
            elif client.update_status(manga.id, None):
                cleared += 1
        except Exception as e:
            print(f"  ERROR cleanup failed for {manga.title}: {e}", flush=True)
        sleep(config.cleanup_pause)
    print(f"Cleanup complete: {cleared}/{total} cleared", flush=True)
    return cleared


def write_processed(path: Path, processed: List[ProcessedManga]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps([p._asdict() for p in processed], indent=2), encoding="utf-8")


def read_processed(path: Path) -> List[ProcessedManga]:
    try:
        rows = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ExportError(f"Failed to read processed list {path}: {e}") from e
    if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
        raise ExportError(f"{path} is not a list of processed manga objects")
    return [ProcessedManga(title=str(r.get("title", "")), id=str(r["id"]), status=str(r.get("status", ""))) for r in rows if r.get("id")]


def print_statistics(categories: Dict[str, List[LocalEntry]]) -> None:
    print("\n== Manga statistics ==", flush=True)
    for category, items in categories.items():
        print(f"  {CATEGORY_LABELS.get(category, category)}: {len(items)} manga", flush=True)


def main(argv: Optional[List[str]] = None, sleep: Callable[[float], None] = time.sleep) -> int:
    p = argparse.ArgumentParser(description="Import a MyAnimeList manga export into MangaDex reading statuses.")
    p.add_argument("input_file", type=Path, nargs="?", default=Path("export.xml"), help="MAL export (.xml, .xml.gz, .csv, .xlsx). Default: ./export.xml")
    p.add_argument("--md-grant-type", help="OAuth grant type (or env MANGADEX_GRANT_TYPE, usually 'password')")
    p.add_argument("--md-username", help="MangaDex username (or env MANGADEX_USERNAME)")
    p.add_argument("--md-password", help="MangaDex password (or env MANGADEX_PASSWORD)")
    p.add_argument("--md-client-id", help="MangaDex personal client id (or env MANGADEX_CLIENT_ID)")
    p.add_argument("--md-client-secret", help="MangaDex personal client secret (or env MANGADEX_CLIENT_SECRET)")
    p.add_argument("--api-url", default=MANGADEX_API, help="MangaDex API base URL")
    p.add_argument("--request-timeout", type=float, default=20.0, help="HTTP request timeout in seconds (default 20)")
    p.add_argument("--throttle", type=float, default=0.25, help="Sleep seconds between entries (default 0.25)")
    p.add_argument("--dry-run", action="store_true", help="Search and match only, do not change statuses")
    p.add_argument("--no-progress", action="store_true", help="Disable per-item progress output")
    p.add_argument("--debug-match", action="store_true", help="Print ranked candidates for every search")
    p.add_argument("--processed-json", type=Path, help="Write matched manga (title, id, status) to this JSON file")
    p.add_argument("--cleanup", action="store_true", help="After importing, clear the status of every matched manga")
    p.add_argument("--cleanup-from", type=Path, help="Skip importing; clear statuses listed in a --processed-json file")
    p.add_argument("--cleanup-pause", type=float, default=0.2, help="Sleep seconds between cleanup requests (default 0.2)")
    args = p.parse_args(argv)

    load_dotenv(find_dotenv(usecwd=True))
    try:
        config = load_config(
            grant_type=args.md_grant_type,
            username=args.md_username,
            password=args.md_password,
            client_id=args.md_client_id,
            client_secret=args.md_client_secret,
            api_url=args.api_url,
            request_timeout=args.request_timeout,
            throttle=args.throttle,
            cleanup_pause=args.cleanup_pause,
            dry_run=args.dry_run,
            show_progress=not args.no_progress,
            debug_match=args.debug_match,
        )
    except ConfigError as e:
        print(f"ERROR: {e}")
        return 2

    try:
        if args.cleanup_from:
            pending = read_processed(args.cleanup_from)
            categories: Dict[str, List[LocalEntry]] = {}
        else:
            print(f"Loading export {args.input_file} ...", flush=True)
            categories = categorize(read_mal_export(args.input_file))
            print_statistics(categories)
    except ExportError as e:
        print(f"ERROR: {e}")
        return 2

    client = make_client(config)
    print("Connecting to MangaDex...", flush=True)
    try:
        client.authenticate(config.credentials())
    except AuthError as e:
        print(f"ERROR: {e}")
        return 3

    if args.cleanup_from:
        cleanup_statuses(client, pending, config, sleep=sleep)
        return 0

    processed = import_entries(client, categories, config, sleep=sleep)
    total = sum(len(v) for v in categories.values())
    print(f"\nSuccessfully processed {len(processed)} of {total} manga", flush=True)

    if args.processed_json:
        try:
            write_processed(args.processed_json, processed)
            print(f"Processed list written to {args.processed_json}")
        except OSError as e:
            print(f"Warning: failed to write processed JSON: {e}")

    if args.cleanup:
        cleanup_statuses(client, processed, config, sleep=sleep)
    return 0


if __name__ == "__main__":
    sys.exit(main())
