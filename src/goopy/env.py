import os


def merge_env(base: dict[str, str], override: dict[str, str]) -> dict[str, str]:
    """
    Merge two environment variable dictionaries, with `override` taking precedence.
    """
    merged = base.copy()

    for key, value in override.items():
        if key == "PATH" and key in merged:
            merged["PATH"] = os.pathsep.join([value, base["PATH"]])
        else:
            merged[key] = value

    return merged


def script_env(workdir: str, root: str, prior_version: str) -> dict[str, str]:
    """
    The environment package scripts run with: the inherited environment plus the goopy
    variables describing the operation.
    """
    return merge_env(
        dict(os.environ),
        {
            "GOOPY_WORKDIR": workdir,
            "GOOPY_ROOT": root,
            "GOOPY_PRIOR_VERSION": prior_version,
        },
    )
