from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from schlichter.config import Settings, ensure_directories
from schlichter.errors import OperationFailed
from schlichter.events import append_event, log
from schlichter.service import IssueService, build_service


def resolve_settings(path: str | None) -> Settings:
  """Load settings from the given file or from the default location.

  Args:
    path: Optional path to a connections file

  Returns:
    Loaded settings
  """
  if path:
    return Settings.load(Path(path))
  return Settings.load()


def select_scopes(settings: Settings, requested: list[str] | None) -> list[str]:
  """Return the scopes to resync: the requested ones or every configured scope.

  Args:
    settings: Loaded settings
    requested: Scope ids given on the command line

  Returns:
    Scope ids in a stable order
  """
  if requested:
    return list(dict.fromkeys(requested))
  return sorted(settings.scopes)


async def resync_scopes(service: IssueService, scopes: list[str]) -> dict[str, str]:
  results: dict[str, str] = {}
  for scope_id in scopes:
    try:
      results[scope_id] = "synced" if await service.resync_scope(scope_id) else "unbound"
    except OperationFailed as exc:
      log(f"Resync fehlgeschlagen für {scope_id}: {exc}")
      results[scope_id] = "failed"
  return results


async def _run(settings: Settings, scopes: list[str]) -> dict[str, str]:
  service = build_service(settings)
  try:
    return await resync_scopes(service, scopes)
  finally:
    await service.aclose()


def main(argv: list[str] | None = None) -> int:
  parser = argparse.ArgumentParser(description="Schlichter Resync-Sweep")
  parser.add_argument("--config", help="connections.yml to use")
  parser.add_argument("--scope", action="append", help="scope to resync (repeatable, default: all)")
  args = parser.parse_args(argv)

  ensure_directories()
  settings = resolve_settings(args.config)
  scopes = select_scopes(settings, args.scope)
  results = asyncio.run(_run(settings, scopes))

  summary = {
    "scopes": results,
    "synced": sum(1 for r in results.values() if r == "synced"),
    "failed": sum(1 for r in results.values() if r == "failed"),
  }
  print(json.dumps(summary, indent=2, ensure_ascii=False))

  append_event({"type": "sweep_completed", **summary})
  return 1 if summary["failed"] else 0


if __name__ == "__main__": # pragma: no cover
  sys.exit(main())
