"""Resolution statuses, server transitions and the two resolution vocabularies."""
from __future__ import annotations

from enum import Enum


class ResolutionStatus(Enum):
  """Resolution a user can pick for a finding."""

  ACCEPT = ("Accept", "The issue is valid but will not be fixed now. It represents accepted technical debt.")
  WONT_FIX = ("Won't Fix", "The issue is valid but does not need fixing. It represents accepted technical debt.")
  FALSE_POSITIVE = ("False Positive", "The issue is raised unexpectedly on code that should not trigger an issue.")

  def __init__(self, title: str, description: str) -> None:
    self.title = title
    self.description = description


class Transition(Enum):
  """Workflow transitions understood by the server, valued by their wire code."""

  ACCEPT = "accept"
  WONT_FIX = "wontfix"
  FALSE_POSITIVE = "falsepositive"
  REOPEN = "reopen"

  @property
  def code(self) -> str:
    return self.value


# Won't Fix was renamed to Accept with server 10.4
LEGACY_VOCABULARY: tuple[ResolutionStatus, ...] = (ResolutionStatus.WONT_FIX, ResolutionStatus.FALSE_POSITIVE)
CURRENT_VOCABULARY: tuple[ResolutionStatus, ...] = (ResolutionStatus.ACCEPT, ResolutionStatus.FALSE_POSITIVE)

_TRANSITION_BY_STATUS = {
  ResolutionStatus.ACCEPT: Transition.ACCEPT,
  ResolutionStatus.WONT_FIX: Transition.WONT_FIX,
  ResolutionStatus.FALSE_POSITIVE: Transition.FALSE_POSITIVE,
}


def transition_for(status: ResolutionStatus) -> Transition:
  return _TRANSITION_BY_STATUS[status]


def transition_codes(vocabulary: tuple[ResolutionStatus, ...]) -> set[str]:
  """Return the wire codes a server must offer for every status of the vocabulary."""
  return {transition_for(status).code for status in vocabulary}


def vocabulary_for_transitions(available: set[str]) -> tuple[ResolutionStatus, ...]:
  """Pick the vocabulary supported by the transitions reported for a finding.

  A server in the middle of the Won't Fix/Accept migration reports both codes,
  so the current vocabulary has to be checked first.

  Args:
    available: Transition codes the server reported

  Returns:
    The matching vocabulary, or an empty tuple when the resolving transitions
    are missing (the user lacks the 'Administer Issues' permission)
  """
  if available >= transition_codes(CURRENT_VOCABULARY):
    return CURRENT_VOCABULARY
  if available >= transition_codes(LEGACY_VOCABULARY):
    return LEGACY_VOCABULARY
  return ()


def parse_status(value: str) -> ResolutionStatus:
  """Parse a status by enum name ("WONT_FIX") or wire code ("wontfix")."""
  normalized = value.strip()
  try:
    return ResolutionStatus[normalized.upper()]
  except KeyError:
    pass
  for status, transition in _TRANSITION_BY_STATUS.items():
    if transition.code == normalized.lower():
      return status
  raise ValueError(f"Unknown resolution status: {value!r}")
