import os
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values


def load_environment(
    dotenv_path: Optional[str] = ".env",
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Build the environment mapping handed to the configuration resolver.

    Variables from the ``.env`` file are overlaid by ``base`` (the process
    environment unless given), so values already exported win over the file,
    the same precedence as ``load_dotenv(override=False)``. A missing file
    contributes nothing. The result is a plain snapshot; later changes to
    ``os.environ`` do not leak into an already resolved proxy.
    """
    environment: Dict[str, str] = {}
    if dotenv_path and os.path.isfile(dotenv_path):
        for key, value in dotenv_values(dotenv_path).items():
            # keys declared without a value come back as None
            if value is not None:
                environment[key] = value
    environment.update(os.environ if base is None else base)
    return environment
