"""
Agent CLI adapters for the two engine collaborators.

CommandGenerator and CommandReviewer run the commands configured in
agents.yaml (claude by default), pass a rendered prompt on stdin and
validate the JSON reply against a schema before handing it to the engine.

Claude CLI with --output-format json wraps the reply in
{"type": "result", "result": "..."}; the inner text may hold prose around a
fenced JSON block.
"""

import json
import logging
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from cofounder.lib.agents_config import AgentsConfig, get_agent_command
from cofounder.lib.errors import (
    CollaboratorFailure,
    GeneratorFailure,
    GeneratorTimeout,
    InvalidDecision,
    ReviewerFailure,
    ReviewerTimeout,
)
from cofounder.lib.prompts import build_section, render_prompt
from cofounder.lib.validate import ValidationError, validate
from cofounder.ledger.artifacts import ArtifactSet
from cofounder.ledger.decisions import Decision, ProposedDecision
from cofounder.ledger.stages import Stage
from cofounder.store.base import PullRequest, VersionedStore
from cofounder.workflow.collaborators import (
    GeneratedContent,
    PullRequestReviewer,
    ReviewVerdict,
    StageContentGenerator,
)

logger = logging.getLogger(__name__)

MAX_DOCUMENT_CHARS = 20000


def extract_json(stdout: str, wrapped: bool) -> dict:
    """Pull the JSON object out of an agent reply.

    Raises:
        json.JSONDecodeError: no parseable object
    """
    inner = stdout.strip()
    if wrapped:
        wrapper = json.loads(inner)
        if isinstance(wrapper, dict) and "result" in wrapper:
            inner = str(wrapper["result"]).strip()

    # Look for ```json or ``` code block anywhere in the response
    if "```" in inner:
        start = inner.find("```json")
        if start == -1:
            start = inner.find("```")
        newline_after_open = inner.find("\n", start)
        if newline_after_open != -1:
            close = inner.find("\n```", newline_after_open)
            if close != -1:
                inner = inner[newline_after_open + 1:close].strip()

    data = json.loads(inner)
    if not isinstance(data, dict):
        raise json.JSONDecodeError("expected a JSON object", inner, 0)
    return data


def run_agent(
    agents_config: AgentsConfig,
    role: str,
    prompt: str,
    context: dict[str, str],
    schema: str,
    timeout: Optional[float],
    failure: type[CollaboratorFailure],
    timed_out: type[CollaboratorFailure],
    log_file: Optional[Path] = None,
) -> dict:
    """Run the agent for role and return its schema-valid JSON reply."""
    agent = get_agent_command(agents_config, role, {**context, "prompt": prompt})

    try:
        result = subprocess.run(
            agent.cmd,
            input=agent.get_stdin_input(prompt),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise timed_out(f"{role} agent timed out after {timeout}s") from None
    except OSError as e:
        raise failure(f"{role} agent could not start: {e}") from e

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        log_file.write_text(
            f"=== COMMAND ===\n{' '.join(agent.cmd)}\n\n"
            f"=== EXIT CODE ===\n{result.returncode}\n\n"
            f"=== STDOUT ===\n{result.stdout}\n\n"
            f"=== STDERR ===\n{result.stderr}\n"
        )

    if result.returncode != 0:
        raise failure(f"{role} agent exited {result.returncode}: {result.stderr.strip()[:500]}")

    try:
        data = extract_json(result.stdout, wrapped=agent.output_format == "json")
        validate(data, schema)
    except json.JSONDecodeError as e:
        raise failure(f"{role} agent returned invalid JSON: {e}") from None
    except ValidationError as e:
        raise failure(f"{role} agent reply failed schema validation: {e}") from None

    return data


def _documents_section(artifacts: ArtifactSet, header: str) -> str:
    parts = []
    for path, text in sorted(artifacts.documents.items()):
        if len(text) > MAX_DOCUMENT_CHARS:
            text = text[:MAX_DOCUMENT_CHARS] + "\n[truncated]"
        parts.append(f"### {path}\n\n{text.strip()}\n")
    return build_section("\n".join(parts), header, "No documents yet.")


class CommandGenerator(StageContentGenerator):

    def __init__(
        self,
        repo: str,
        agents_config: AgentsConfig,
        timeout: Optional[float] = None,
        log_dir: Optional[Path] = None,
    ):
        self.repo = repo
        self.agents_config = agents_config
        self.timeout = timeout
        self.log_dir = log_dir

    def generate(
        self,
        stage: Stage,
        next_stage: Stage,
        artifacts: ArtifactSet,
        decisions: Sequence[Decision] = (),
    ) -> GeneratedContent:
        decision_lines = "\n".join(
            f"- {d.name}: {d.chosen} ({d.type.value}, revisit probability {d.revisit_probability})"
            for d in decisions
        )
        prompt = render_prompt(
            "generate_stage",
            repo=self.repo,
            stage=str(stage),
            next_stage=str(next_stage),
            artifacts_section=_documents_section(artifacts, f"## Current {stage} Artifacts"),
            decisions_section=build_section(decision_lines, "## Decisions Already Made", "None yet."),
        )

        logger.info(f"[AGENT] Generating {next_stage} content for {self.repo}")
        data = run_agent(
            self.agents_config, "generate", prompt,
            {"repo": self.repo, "stage": str(next_stage)},
            "generated_content", self.timeout, GeneratorFailure, GeneratorTimeout,
            log_file=self.log_dir / "generate.log" if self.log_dir else None,
        )

        try:
            proposed = [ProposedDecision.from_dict(d) for d in data.get("decisions", [])]
        except InvalidDecision as e:
            raise GeneratorFailure(f"generator proposed an invalid decision: {e}") from None

        return GeneratedContent(files=data["files"], decisions=proposed, summary=data["summary"])


class CommandReviewer(PullRequestReviewer):

    def __init__(
        self,
        store: VersionedStore,
        agents_config: AgentsConfig,
        timeout: Optional[float] = None,
        log_dir: Optional[Path] = None,
    ):
        self.store = store
        self.agents_config = agents_config
        self.timeout = timeout
        self.log_dir = log_dir

    def review(self, pr: PullRequest) -> ReviewVerdict:
        artifacts = ArtifactSet.load(self.store, pr.head)
        prompt = render_prompt(
            "review_transition",
            title=pr.title,
            head=pr.head,
            base=pr.base,
            body=pr.body or "(no description)",
            files_section=_documents_section(artifacts, f"## Documents on {pr.head}"),
        )

        logger.info(f"[AGENT] Reviewing PR #{pr.number} ({pr.head} -> {pr.base})")
        data = run_agent(
            self.agents_config, "review", prompt,
            {"repo": self.store.repo, "stage": pr.head},
            "review", self.timeout, ReviewerFailure, ReviewerTimeout,
            log_file=self.log_dir / f"review-{pr.number}.log" if self.log_dir else None,
        )
        return ReviewVerdict(
            approved=data["approved"],
            confidence=float(data["confidence"]),
            notes=data.get("notes", ""),
        )
