class RuntimeConfig:
    """
    Process-wide flags set once by the CLI callback.
    VERBOSE drives the sub-step spinners; CONFIG_FILE is the YAML layer of the settings.
    """
    VERBOSE: bool = True
    CONFIG_FILE: str = "arcboard.yaml"


config = RuntimeConfig()
