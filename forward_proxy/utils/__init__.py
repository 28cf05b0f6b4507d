from typing import Optional


def mask_secret(text: str, secret: Optional[str]) -> str:
    return text.replace(secret, f"{secret[:2]}****") if secret else text
