"""AWS credential profile types."""

from typing import ClassVar

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import IssuerError
from .base import Capabilities, Profile, PromptField
from .registry import registry

logger = structlog.get_logger(__name__)

DEFAULT_REGION = "us-east-1"
CREDENTIALS_FILE = "aws/credentials"

# Error codes meaning AWS rejected the credentials themselves rather than
# failing to answer.
REJECTED_CODES = frozenset(
    {
        "AccessDenied",
        "AuthFailure",
        "ExpiredToken",
        "InvalidClientTokenId",
        "SignatureDoesNotMatch",
        "UnrecognizedClientException",
    }
)


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class _AwsCredentials(Profile):
    access_key_id: str = ""
    secret_access_key: str = ""
    region: str = DEFAULT_REGION

    secret_fields: ClassVar[frozenset[str]] = frozenset({"secret_access_key"})

    def _session(self) -> boto3.session.Session:
        return boto3.session.Session(
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            aws_session_token=getattr(self, "session_token", None) or None,
            region_name=self.region or DEFAULT_REGION,
        )

    def verify_credentials(self) -> tuple[str, bool]:
        """Ask STS who these credentials belong to.

        Raises:
            IssuerError: If STS could not be reached or failed for a reason
                other than rejecting the credentials.
        """
        try:
            identity = self._session().client("sts").get_caller_identity()
        except ClientError as e:
            if _error_code(e) in REJECTED_CODES:
                logger.info("credentials_rejected", name=self.name, code=_error_code(e))
                return f"rejected by AWS: {e}", False
            raise IssuerError(f"STS call failed for '{self.name}': {e}") from e
        except BotoCoreError as e:
            raise IssuerError(f"Cannot reach STS for '{self.name}': {e}") from e

        return f"authenticated as {identity['Arn']}", True


@registry.register
class AwsProfile(_AwsCredentials):
    """Long-lived IAM user access key pair."""

    type_name: ClassVar[str] = "aws"
    description: ClassVar[str] = (
        "Long-lived AWS IAM access key pair. Can be verified with STS and "
        "rotated through IAM (a new key is created and the old one deleted)."
    )
    capabilities: ClassVar[Capabilities] = Capabilities(verify=True, rotate=True)
    prompt_fields: ClassVar[tuple[PromptField, ...]] = (
        PromptField("access_key_id", "Access key ID"),
        PromptField("secret_access_key", "Secret access key", secret=True),
        PromptField("region", "Region", default=DEFAULT_REGION),
    )

    def rotate_credentials(self) -> bytes:
        """Replace the access key pair through IAM.

        A new key is created before the old one is deleted. Once this
        returns, the caller owns the only copy of the new secret.

        Raises:
            IssuerError: If no new key could be created.
        """
        iam = self._session().client("iam")
        try:
            user = iam.get_user()["User"]["UserName"]
            new_key = iam.create_access_key(UserName=user)["AccessKey"]
        except (ClientError, BotoCoreError) as e:
            raise IssuerError(f"Cannot create a new access key for '{self.name}': {e}") from e

        logger.info(
            "created_access_key",
            name=self.name,
            user=user,
            access_key_id=new_key["AccessKeyId"],
        )

        try:
            iam.delete_access_key(UserName=user, AccessKeyId=self.access_key_id)
        except (ClientError, BotoCoreError) as e:
            # The new key is valid either way; the old one stays active.
            logger.warning(
                "old_access_key_not_deleted",
                name=self.name,
                access_key_id=self.access_key_id,
                error=str(e),
            )

        rotated = self.model_copy(
            update={
                "access_key_id": new_key["AccessKeyId"],
                "secret_access_key": new_key["SecretAccessKey"],
            }
        )
        return rotated.serialize()


@registry.register
class AwsSessionProfile(_AwsCredentials):
    """Short-lived STS session credentials."""

    type_name: ClassVar[str] = "aws-session"
    description: ClassVar[str] = (
        "Short-lived AWS session credentials (access key, secret and session "
        "token). Can be verified with STS and mounted as a section of "
        f"'{CREDENTIALS_FILE}'. Session tokens cannot be rotated, only reissued."
    )
    capabilities: ClassVar[Capabilities] = Capabilities(mount=True, verify=True)
    prompt_fields: ClassVar[tuple[PromptField, ...]] = (
        PromptField("access_key_id", "Access key ID"),
        PromptField("secret_access_key", "Secret access key", secret=True),
        PromptField("session_token", "Session token", secret=True),
        PromptField("region", "Region", default=DEFAULT_REGION),
    )
    secret_fields: ClassVar[frozenset[str]] = frozenset(
        {"secret_access_key", "session_token"}
    )

    session_token: str = ""

    def mount_snippet(self) -> tuple[str, bytes]:
        """Render an AWS shared-credentials section named after the profile."""
        lines = [
            f"[{self.name}]",
            f"aws_access_key_id = {self.access_key_id}",
            f"aws_secret_access_key = {self.secret_access_key}",
            f"aws_session_token = {self.session_token}",
            f"region = {self.region}",
            "",
        ]
        return CREDENTIALS_FILE, ("\n".join(lines) + "\n").encode()
