from __future__ import annotations

import hashlib
import hmac

GITHUB_SIGNATURE_HEADER = "X-Hub-Signature-256"
GITLAB_TOKEN_HEADER = "X-Gitlab-Token"
GITHUB_EVENT_HEADER = "X-GitHub-Event"


def github_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_github_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    if not signature or not secret:
        return False
    return hmac.compare_digest(signature.strip().encode("utf-8"), github_signature(body, secret).encode("utf-8"))


def verify_gitlab_token(token: str | None, secret: str | None) -> bool:
    if not token or not secret:
        return False
    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))
