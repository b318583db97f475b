from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Dict, Any, Union
import yaml
import gridquery
from gridquery.exceptions import ConfigurationError


@dataclass(frozen=True)
class DatatableConfig:
    """
    Static engine configuration, read once at startup and shared read-only by
    every engine instance.

    Attributes:
        case_insensitive: Lower-case keywords and wrap searched columns in LOWER()
        use_wildcards: Expand user supplied wildcards (* and ?) into LIKE patterns
        smart: Split the global keyword on whitespace and wrap terms in %...%
        nulls_last: Order with the NULLS LAST template instead of a plain ORDER BY
        nulls_last_sql: Format string taking the column and the direction
        oracle: Force Oracle syntax regardless of the connected driver
        default_page_size: Page size used when the request asks for 0 rows
        debug: Log the compiled SQL after every compilation pass, the `gridquery`
            logger has to be enabled for DEBUG
    """
    case_insensitive: bool = True
    use_wildcards: bool = False
    smart: bool = True
    nulls_last: bool = False
    nulls_last_sql: str = "%s %s NULLS LAST"
    oracle: bool = False
    default_page_size: int = 10
    debug: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DatatableConfig':
        """
        Build a configuration from a mapping, merged over the defaults.

        The mapping may hold the keys directly or below a ``datatables`` section.

        Args:
            data: Configuration values

        Returns:
            A new DatatableConfig

        Raises:
            ConfigurationError: If the mapping contains unknown keys
        """
        data = data or {}
        if isinstance(data.get('datatables'), dict):
            data = data['datatables']

        values = asdict(cls())
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown datatable configuration keys: {sorted(unknown)}")

        gridquery.deep_merge(values, dict(data))
        if values['nulls_last_sql'].count('%s') != 2:
            raise ConfigurationError("nulls_last_sql must contain two '%s' placeholders")
        return cls(**values)


def load_config(config: Union[str, Path] = "datatables.yaml") -> DatatableConfig:
    """
    Load the datatable configuration from a YAML file.

    Args:
        config: Path to configuration file

    Returns:
        The loaded configuration
    """
    with open(config) as f:
        data = yaml.safe_load(f)
    return DatatableConfig.from_dict(data or {})
