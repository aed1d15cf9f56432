"""PHP-FPM pool configuration rendering.

`PoolSettings` holds every tunable field of a pool with its documented
default. Rendering is pure: the same settings always produce byte-identical
text. Optional fields that are unset are omitted from the output instead of
being written blank.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import InvalidSettingsError

POOL_TEMPLATE = """\
; Managed by lightweight-php. Changes made here are overwritten.
[{pool_name}]
user = {username}
group = {group}

listen = {socket_path}
listen.owner = {username}
listen.group = {group}
listen.mode = {listen_mode}

pm = {process_manager}
pm.max_children = {max_children}
pm.start_servers = {start_servers}
pm.min_spare_servers = {min_spare_servers}
pm.max_spare_servers = {max_spare_servers}
pm.max_requests = {max_requests}
{process_options}
php_admin_value[sendmail_path] = {sendmail_path}
php_flag[display_errors] = {display_errors}
php_admin_value[error_log] = {error_log}
php_admin_flag[log_errors] = {log_errors}
php_admin_value[memory_limit] = {memory_limit}
{php_options}"""

# Optional directives, rendered only when the field is set
_PROCESS_OPTIONS = (
    ("process_idle_timeout", "pm.process_idle_timeout"),
)
_PHP_OPTIONS = (
    ("max_execution_time", "php_admin_value[max_execution_time]"),
    ("upload_max_filesize", "php_admin_value[upload_max_filesize]"),
    ("post_max_size", "php_admin_value[post_max_size]"),
    ("date_timezone", "php_admin_value[date.timezone]"),
)

_SIZE = r"^(-1|\d+[KMGkmg]?)$"
_DURATION = r"^\d+[smhd]?$"

_SPARE_DEFAULTS = {"max_spare_servers": 35, "start_servers": 5, "min_spare_servers": 5}


class PoolSettings(BaseModel):
    """Tunable pool fields and their defaults."""
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    # Process manager
    process_manager: Literal["static", "dynamic", "ondemand"] = "dynamic"
    max_children: int = Field(default=50, gt=0)
    start_servers: int = Field(default=5, gt=0)
    min_spare_servers: int = Field(default=5, gt=0)
    max_spare_servers: int = Field(default=35, gt=0)
    max_requests: int = Field(default=500, ge=0)
    process_idle_timeout: str | None = Field(default=None, pattern=_DURATION)

    # Socket
    listen_mode: str = Field(default="0660", pattern=r"^0?[0-7]{3}$")

    # PHP values
    sendmail_path: str = "/usr/sbin/sendmail -t -i -f www@my.domain.com"
    display_errors: Literal["on", "off"] = "off"
    log_errors: Literal["on", "off"] = "on"
    error_log: str | None = None  # defaults to /var/log/fpm-php.<user>.log
    memory_limit: str = Field(default="128M", pattern=_SIZE)
    max_execution_time: str | None = Field(default=None, pattern=r"^\d+$")
    upload_max_filesize: str | None = Field(default=None, pattern=_SIZE)
    post_max_size: str | None = Field(default=None, pattern=_SIZE)
    date_timezone: str | None = None

    @field_validator("*", mode="after")
    @classmethod
    def _single_line(cls, v: Any) -> Any:
        # Values are copied into the pool file verbatim
        if isinstance(v, str) and any(ord(c) < 32 or ord(c) == 127 for c in v):
            raise ValueError("control characters are not allowed")
        return v

    @field_validator("display_errors", "log_errors", mode="before")
    @classmethod
    def _flag(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return "on" if v else "off"
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("max_execution_time", "process_idle_timeout", mode="before")
    @classmethod
    def _seconds(cls, v: Any) -> Any:
        # JSON numbers arrive as int or float
        if isinstance(v, bool):
            raise ValueError("expected a number of seconds")
        if isinstance(v, (int, float)):
            return str(int(v))
        return v

    @model_validator(mode="before")
    @classmethod
    def _fit_spare_servers(cls, data: Any) -> Any:
        """Scale spare-server fields that were not given down to max_children."""
        if not isinstance(data, dict) or "max_children" not in data:
            return data
        try:
            ceiling = int(data["max_children"])
        except (TypeError, ValueError):
            return data
        if ceiling <= 0:
            return data

        data = dict(data)
        for name, default in _SPARE_DEFAULTS.items():
            if name not in data:
                data[name] = min(default, ceiling)
            try:
                ceiling = int(data[name])
            except (TypeError, ValueError):
                return data
        return data

    @model_validator(mode="after")
    def _spare_servers(self) -> "PoolSettings":
        if self.process_manager != "dynamic":
            return self
        if self.min_spare_servers > self.max_spare_servers:
            raise ValueError("min_spare_servers must not exceed max_spare_servers")
        if not self.min_spare_servers <= self.start_servers <= self.max_spare_servers:
            raise ValueError("start_servers must lie between min and max spare servers")
        if self.max_spare_servers > self.max_children:
            raise ValueError("max_spare_servers must not exceed max_children")
        return self


def _describe(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "settings"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def parse_settings(data: dict | None) -> PoolSettings:
    """Build settings from a (possibly partial) dict of fields."""
    try:
        return PoolSettings.model_validate(data or {})
    except ValidationError as e:
        raise InvalidSettingsError(f"Invalid pool settings: {_describe(e)}") from e


def merge_settings(current: PoolSettings, overrides: dict) -> PoolSettings:
    """Apply sparse overrides on top of a pool's current settings.

    Fields not named in `overrides` keep their current values. Spare-server
    fields that were never set explicitly follow a lowered max_children.
    """
    return parse_settings({**current.model_dump(exclude_unset=True), **overrides})


def _optional_lines(settings: PoolSettings, options: tuple[tuple[str, str], ...]) -> str:
    lines = []
    for field, directive in options:
        value = getattr(settings, field)
        if value:
            lines.append(f"{directive} = {value}\n")
    return "".join(lines)


def render_pool_config(
    username: str,
    group: str,
    socket_path: str,
    settings: PoolSettings | None = None,
) -> str:
    """Render the pool configuration file text."""
    settings = settings or PoolSettings()
    return POOL_TEMPLATE.format(
        pool_name=username,
        username=username,
        group=group,
        socket_path=socket_path,
        listen_mode=settings.listen_mode,
        process_manager=settings.process_manager,
        max_children=settings.max_children,
        start_servers=settings.start_servers,
        min_spare_servers=settings.min_spare_servers,
        max_spare_servers=settings.max_spare_servers,
        max_requests=settings.max_requests,
        process_options=_optional_lines(settings, _PROCESS_OPTIONS),
        sendmail_path=settings.sendmail_path,
        display_errors=settings.display_errors,
        error_log=settings.error_log or f"/var/log/fpm-php.{username}.log",
        log_errors=settings.log_errors,
        memory_limit=settings.memory_limit,
        php_options=_optional_lines(settings, _PHP_OPTIONS),
    )
