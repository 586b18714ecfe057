"""Shared constants for the engine."""

import re

# Idea IDs double as repository slugs: idea-<id>
IDEA_ID_PATTERN = re.compile(r'^[a-z0-9][a-z0-9-]*$')
MAX_IDEA_ID_LEN = 50
REPO_PREFIX = "idea-"

# Files every stage branch may carry
DECISION_LOG_PATH = "DECISIONS.log"
DECISION_LOG_HEADER = "# Decision History\n\n"

# Decision that authorizes implementation/develop -> implementation/production
PROMOTION_DECISION = "promote-to-stable"

# Defaults, overridable in engine.env
DEFAULT_REVISIT_THRESHOLD = 0.7
DEFAULT_AUTO_MERGE_CONFIDENCE = 0.8
DEFAULT_MERGE_METHOD = "squash"
VALID_MERGE_METHODS = {"squash", "merge", "rebase"}

# CLI exit codes
EXIT_OK = 0
EXIT_NOT_READY = 1
EXIT_CONFIG = 2
EXIT_RETRYABLE = 3
EXIT_COLLABORATOR = 4
EXIT_INVARIANT = 5
EXIT_LOCK_TIMEOUT = 6
