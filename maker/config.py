"""Global configuration for the consensus-driven stepwise solver."""

import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Literal


# ---------------------------------------------------------------------------
# LLM backends
# ---------------------------------------------------------------------------

BackendProvider = Literal["openai", "transformers"]


@dataclass
class LLMBackendConfig:
    """Configuration for the oracle backend.

    Parameters
    ----------
    provider:
        - "openai": uses the async OpenAI Python client.
        - "transformers": uses a local HuggingFace model via transformers.
    base_url:
        For "openai": usually "https://api.openai.com/v1".
        For "transformers": ignored.
    api_key:
        For "openai": your OpenAI API key.
        For "transformers": ignored.
    model:
        - For "openai": the model name (e.g. "gpt-4o-mini").
        - For "transformers": the HF model id or local path.
    max_tokens:
        Hard cap on generated tokens per call.
    timeout:
        Per-request timeout in seconds (openai only).
    """

    provider: BackendProvider
    base_url: str
    api_key: str
    model: str
    max_tokens: int = 1000
    timeout: float = 60.0


ORACLE_BACKEND = LLMBackendConfig(
    provider=os.getenv("ORACLE_PROVIDER", "openai"),
    base_url=os.getenv("ORACLE_BASE_URL", "https://api.openai.com/v1"),
    api_key=os.getenv("ORACLE_API_KEY", os.getenv("OPENAI_API_KEY", "")),
    model=os.getenv("ORACLE_MODEL_NAME", "gpt-4o-mini"),
    max_tokens=int(os.getenv("ORACLE_MAX_TOKENS", "1000")),
    timeout=float(os.getenv("ORACLE_TIMEOUT", "60")),
)


# ---------------------------------------------------------------------------
# Voting knobs
# ---------------------------------------------------------------------------

# Required lead of the leader over the runner-up.
DEFAULT_K: int = int(os.getenv("MAKER_K", "3"))

# Oracle calls per step before falling back to the plurality leader.
DEFAULT_MAX_VOTES: int = int(os.getenv("MAKER_MAX_VOTES", "10"))

# Oracle calls issued concurrently per wave (1 = strictly one at a time).
DEFAULT_PARALLEL_SAMPLES: int = int(os.getenv("MAKER_PARALLEL_SAMPLES", "1"))

# First sample favours determinism, later samples gather independent votes.
FIRST_TEMPERATURE: float = float(os.getenv("MAKER_FIRST_TEMPERATURE", "0.0"))
VOTE_TEMPERATURE: float = float(os.getenv("MAKER_TEMPERATURE", "0.1"))

# Transport failures retried per attempt without consuming vote budget.
TRANSPORT_RETRIES: int = int(os.getenv("MAKER_TRANSPORT_RETRIES", "3"))
TRANSPORT_BACKOFF_SEC: float = float(os.getenv("MAKER_TRANSPORT_BACKOFF", "0.5"))

# Red-flag cap on oracle output length (~750 tokens).
MAX_RESPONSE_CHARS: int = int(os.getenv("MAKER_MAX_RESPONSE_CHARS", "3000"))

LOG_LEVEL: str = os.getenv("MAKER_LOG_LEVEL", "INFO")

# Paths
PROJECT_ROOT: str = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
LOG_DIR: str = os.path.join(PROJECT_ROOT, "logs")
RUN_LOG_PATH: str = os.getenv("RUN_LOG_PATH", os.path.join(LOG_DIR, "runs.jsonl"))


@dataclass(frozen=True)
class VotingConfig:
    """Parameters of one step's consensus round.

    ``k`` is the lead (leader count minus runner-up count) needed to
    declare consensus; ``max_attempts`` bounds oracle calls per step.
    """

    k: int = DEFAULT_K
    max_attempts: int = DEFAULT_MAX_VOTES
    parallel_samples: int = DEFAULT_PARALLEL_SAMPLES
    first_temperature: float = FIRST_TEMPERATURE
    temperature: float = VOTE_TEMPERATURE
    transport_retries: int = TRANSPORT_RETRIES
    transport_backoff: float = TRANSPORT_BACKOFF_SEC

    def __post_init__(self) -> None:
        if self.k < 1:
            raise ValueError(f"k must be >= 1, got {self.k}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.parallel_samples < 1:
            raise ValueError(
                f"parallel_samples must be >= 1, got {self.parallel_samples}"
            )
        if self.transport_retries < 0:
            raise ValueError(
                f"transport_retries must be >= 0, got {self.transport_retries}"
            )

    def temperature_for(self, attempt_index: int) -> float:
        return self.first_temperature if attempt_index == 0 else self.temperature


@dataclass(frozen=True)
class SolverConfig:
    """Voting parameters plus domain sizing and the derived step budget."""

    voting: VotingConfig
    max_steps: int
    problem: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_steps < 1:
            raise ValueError(f"max_steps must be >= 1, got {self.max_steps}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
