"""Readable messages for invalid ``HANGAR_*`` settings."""

from pydantic import BaseModel, SecretStr
from pydantic import ValidationError as PydanticValidationError


def env_var_name(field: str, env_prefix: str = "HANGAR_") -> str:
    """Return the environment variable that feeds a settings field.

    Example:
        >>> env_var_name("aws_region")
        'HANGAR_AWS_REGION'
    """
    return f"{env_prefix}{field}".upper()


def _secret_fields(model: type[BaseModel] | None) -> set[str]:
    if model is None:
        return set()
    return {
        name
        for name, info in model.model_fields.items()
        if SecretStr in _annotation_members(info.annotation)
    }


def _annotation_members(annotation: object) -> tuple[object, ...]:
    args = getattr(annotation, "__args__", None)
    return (annotation, *args) if args else (annotation,)


def describe_settings_errors(
    exc: PydanticValidationError,
    env_prefix: str = "HANGAR_",
    model: type[BaseModel] | None = None,
) -> list[str]:
    """Turn a settings ValidationError into one line per failing variable.

    Each line names the environment variable to fix, the settings field it
    maps to and pydantic's message. Values rejected by a custom validator are
    echoed back, except for secret fields of ``model``.

    Args:
        exc: Error raised while building the settings
        env_prefix: Prefix the settings class reads variables with
        model: Settings class, used to find secret fields

    Returns:
        Messages such as
        ``"HANGAR_PORT (port): Input should be less than or equal to 65535"``
    """
    secrets = _secret_fields(model)
    messages: list[str] = []

    for error in exc.errors():
        loc = error.get("loc", ())
        if not loc:
            messages.append(error.get("msg", "Unknown error"))
            continue

        field = str(loc[0])
        path = field + "".join(f"[{item}]" for item in loc[1:])
        msg = error.get("msg", "Unknown error")
        line = f"{env_var_name(field, env_prefix)} ({path}): {msg}"
        if error.get("type") == "value_error" and field not in secrets:
            line += f" (received: {error.get('input')!r})"
        messages.append(line)

    return messages or ["Settings failed validation"]
