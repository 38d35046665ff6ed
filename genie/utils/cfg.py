import yaml

from genie.errors import ConfigurationError


def load_config(path="config.yaml") -> dict:
    """
    Load the YAML configuration for model dimensions, weights and playback.

    :param path: Path to the configuration YAML file. Defaults to "config.yaml".
    :type path: str, optional
    :return: Parsed configuration dictionary.
    :rtype: dict
    :raises ConfigurationError: if the file is missing or not a YAML mapping.
    """
    try:
        with open(path, "r") as f:
            cfg = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read config {path}: {e}") from e
    if not isinstance(cfg, dict):
        raise ConfigurationError(f"Config {path} is not a mapping")
    return cfg
