import os
import yaml

DEFAULT_CONFIG = {
    "database": {
        "path": "~/.dirtlocker/locker.db",
    },
    "files": {
        "cache": {
            "dir": "~/.dirtlocker/cache",
        },
    },
    "discord": {
        "token": "",
        "api_base": "https://discord.com/api/v10",
        "cdn_base": "https://cdn.discordapp.com",
    },
    "http": {
        "timeout": 15,
        "user_agent": "DirtLocker/1.0",
    },
    "hydration": {
        "max_workers": 8,
    },
    "logging_level": "INFO",
    "gui": {
        "row_height": 100,
        "row_color": "white",
        "hover_color": "lightgray",
        "select_color": "khaki",
        "copy_feedback_ms": 1000,
        "statusbar_font": "Arial",
        "statusbar_font_size": 10,
    },
}

TOKEN_ENV_VAR = "DIRTLOCKER_DISCORD_TOKEN"


def _default_config_path() -> str:
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return os.path.join(xdg_config_home, "dirtlocker", "config.yaml")


def _deep_merge(base: dict, override: dict) -> dict:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class ConfigManager:
    def __init__(self, config_path: str | None = None):
        self.config_path = config_path or _default_config_path()
        self.config = self.load_config()

    def load_config(self):
        try:
            with open(self.config_path, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            self.save_config(DEFAULT_CONFIG)
            return _deep_merge(DEFAULT_CONFIG, {})
        except yaml.YAMLError as exc:
            raise ValueError(f"Malformed config at {self.config_path}") from exc
        if not isinstance(user_config, dict):
            raise ValueError(f"Config at {self.config_path} must be a mapping")
        return _deep_merge(DEFAULT_CONFIG, user_config)

    def save_config(self, config):
        os.makedirs(os.path.dirname(self.config_path), exist_ok=True)
        with open(self.config_path, "w") as f:
            yaml.dump(config, f, default_flow_style=False)

    def get(self, key, default=None):
        keys = key.split('.')
        value = self.config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
        return value if value is not None else default

    def set(self, key, value):
        keys = key.split('.')
        node = self.config
        for k in keys[:-1]:
            node = node.setdefault(k, {})
        node[keys[-1]] = value
        self.save_config(self.config)

    @property
    def discord_token(self) -> str:
        # The environment wins so tokens never have to live in the YAML file.
        return os.environ.get(TOKEN_ENV_VAR) or self.get("discord.token", "")

    @property
    def logging_level(self):
        return self.get("logging_level", "INFO")
