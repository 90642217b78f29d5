"""Request and result models for a provisioning run.

- ProvisioningRequest: the validated repository URL a run starts from
- PipelineResult: the terminal value of one run

The models use Pydantic for validation, consistent with the event and
state models.
"""

from typing import Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic import field_validator

from src.provisioning.errors import ValidationError

ALLOWED_URL_SCHEMES = ("http", "https")

EMPTY_URL_MESSAGE = "Please enter a repository URL"
INVALID_URL_MESSAGE = (
    "Please enter a valid URL (must start with http:// or https://)"
)


def check_repository_url(value: str) -> str:
    """Return the trimmed URL if it is an absolute http(s) URL.

    Args:
        value: Raw user input.

    Returns:
        The URL with surrounding whitespace removed.

    Raises:
        ValueError: With a user-facing message when the URL is rejected.
    """
    url = value.strip()
    if not url:
        raise ValueError(EMPTY_URL_MESSAGE)
    if any(ch.isspace() for ch in url):
        raise ValueError(INVALID_URL_MESSAGE)

    try:
        parts = urlsplit(url)
        # Accessing port validates it (raises ValueError when out of range)
        parts.port
    except ValueError as exc:
        raise ValueError(INVALID_URL_MESSAGE) from exc

    if parts.scheme.lower() not in ALLOWED_URL_SCHEMES or not parts.hostname:
        raise ValueError(INVALID_URL_MESSAGE)
    return url


class ProvisioningRequest(BaseModel):
    """A repository URL accepted for provisioning.

    Immutable once created. Use from_input() to build one from raw
    observer input; it raises the pipeline's ValidationError instead of
    Pydantic's.

    Attributes:
        repository_url: Absolute http:// or https:// URL of the repository.
    """

    model_config = ConfigDict(frozen=True)

    repository_url: str = Field(
        ...,
        description="Absolute HTTP(S) URL of the repository to clone",
    )

    @field_validator("repository_url")
    @classmethod
    def validate_repository_url(cls, v: str) -> str:
        """Validate that the URL parses and uses http or https."""
        return check_repository_url(v)

    @classmethod
    def from_input(cls, raw_url: Optional[str]) -> "ProvisioningRequest":
        """Build a request from untrusted input.

        Args:
            raw_url: The string typed by the user.

        Returns:
            The validated request.

        Raises:
            ValidationError: If the URL is empty, malformed, or not http(s).
        """
        if not isinstance(raw_url, str):
            raise ValidationError(repr(raw_url), EMPTY_URL_MESSAGE)
        try:
            return cls(repository_url=raw_url)
        except PydanticValidationError as exc:
            reason = exc.errors()[0].get("ctx", {}).get("error")
            raise ValidationError(raw_url, str(reason or INVALID_URL_MESSAGE)) from None


class PipelineResult(BaseModel):
    """Terminal value of one provisioning run.

    Attributes:
        success: True only when the bootstrap script exited with code 0.
        message: One human-readable terminal message.
        exit_code: Exit code of the bootstrap script, when it ran.
        error_type: Class name of the most specific error, for failures.
        stage: Stage where the run failed, for failures.
        run_id: Identifier shared with every event of the run.
    """

    success: bool
    message: str
    exit_code: Optional[int] = None
    error_type: Optional[str] = None
    stage: Optional[str] = None
    run_id: str = ""

    def to_dict(self) -> dict:
        """Return the {success, message} contract plus failure details."""
        return self.model_dump(exclude_none=True)
