#  Build the settings database from a series of YAML/JSON config files and
#  the environment.
#
#  See LICENSE for licence details.

# pylint: disable=invalid-name
import importlib.resources
import json
import os
import re
from enum import Enum
from functools import lru_cache, reduce
from typing import (Any, Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional,
                    Set, Tuple)

import yaml

from pdkforge.logging import ForgeLogging, ForgeLoggingContext
from pdkforge.utils import add_dicts, deepdict, topological_sort

__all__ = ['ENVIRONMENT_OVERRIDES', 'load_yaml', 'MetaDirective', 'get_meta_directives', 'unpack',
           'reverse_unpack', 'fold_dict_settings', 'update_and_expand_meta', 'combine_configs', 'NamedType',
           'ConfigType', 'parse_setting_type', 'coerce_from_string', 'SettingsDatabase', 'load_config_from_string',
           'load_config_from_file', 'load_config_from_defaults']

# Special key used for meta directives which require config paths.
_CONFIG_PATH_KEY = "_config_path"

# Environment variables understood by the installers, and the setting each one overrides.
ENVIRONMENT_OVERRIDES = {
    "MAGIC_REPO_URL": "magic.repo_url",
    "MAGIC_BRANCH": "magic.branch",
    "MAGIC_BUILD_DIR": "magic.build_dir",
    "MAGIC_PREFIX": "magic.prefix",
    "MAGIC_JOBS": "magic.jobs",
    "PDK_ROOT": "sky130.pdk_root",
}  # type: Dict[str, str]


def load_yaml(yaml_str: str) -> dict:
    """
    Load a YAML config.

    :param yaml_str: A string containing the YAML config.
    :return: A dictionary object representing the config.
    """
    obj = yaml.safe_load(yaml_str)
    if obj is None:
        # Loading a YAML file with nothing (except comments) returns None.
        return {}
    if not isinstance(obj, dict):
        raise ValueError("Config files should contain a mapping at the top level, got %s" % type(obj).__name__)
    return obj


# Represents a meta directive in the configuration system.
class MetaDirective(NamedTuple('MetaDirective', [
    # Action which implements this meta directive.
    # def action(config_dict: dict, key: str, value: Any) -> None:
    ('action', Callable[[dict, str, Any], None]),
    # Settings the meta directive depends on, e.g. subst of "${a}/${b}" -> ['a', 'b'].
    # def target_settings(key: str, value: Any) -> List[str]:
    ('target_settings', Callable[[str, Any], List[str]])
])):
    __slots__ = ()


__VARIABLE_EXPANSION_REGEX = r'\${([a-zA-Z_\-\d.]+)}'


@lru_cache(maxsize=2)
def get_meta_directives() -> Dict[str, MetaDirective]:
    """
    Get all meta directives available.
    :return: Meta directives indexed by action (e.g. "subst").
    """
    directives = {}  # type: Dict[str, MetaDirective]

    def append_action(config_dict: dict, key: str, value: Any) -> None:
        if key not in config_dict:
            config_dict[key] = []

        if not isinstance(config_dict[key], list):
            raise ValueError(f"Trying to append to non-list setting {key}")
        if not isinstance(value, list):
            raise ValueError(f"Trying to append to list {key} with non-list {value}")
        config_dict[key] = config_dict[key] + value

    directives['append'] = MetaDirective(action=append_action,
                                         target_settings=lambda key, value: [key])

    def subst_str(input_str: str, replacement_func: Callable[[str], str]) -> str:
        """Substitute ${...}"""
        return re.sub(__VARIABLE_EXPANSION_REGEX, lambda x: replacement_func(x.group(1)), input_str)

    def lookup(config_dict: dict, key: str) -> str:
        if key not in config_dict:
            raise ValueError(f"Substitution refers to missing setting {key}")
        return str(config_dict[key])

    def subst_action(config_dict: dict, key: str, value: Any) -> None:
        if isinstance(value, list):
            config_dict[key] = [subst_str(v, lambda k: lookup(config_dict, k)) for v in value]
        else:
            config_dict[key] = subst_str(value, lambda k: lookup(config_dict, k))

    def subst_targets(key: str, value: Any) -> List[str]:
        subst_strings = []  # type: List[str]
        if isinstance(value, str):
            subst_strings.append(value)
        elif isinstance(value, list):
            for i in value:
                assert isinstance(i, str)
            subst_strings = value
        else:
            raise ValueError(f"subst must operate on a str or List[str]; got {value} instead")

        output_vars = []  # type: List[str]
        for subst_value in subst_strings:
            for match in re.finditer(__VARIABLE_EXPANSION_REGEX, subst_value, re.DOTALL):
                output_vars.append(match.group(1))
        return output_vars

    directives['subst'] = MetaDirective(action=subst_action,
                                        target_settings=subst_targets)

    def crossref_action(config_dict: dict, key: str, value: Any) -> None:
        """Copy the contents of the referenced key for use as this key's value."""
        if not isinstance(value, str):
            raise ValueError(f"crossref of {key} must name a single setting")
        if value not in config_dict:
            raise ValueError(f"crossref of {key} refers to missing setting {value}")
        config_dict[key] = deepdict({"v": config_dict[value]})["v"]

    directives['crossref'] = MetaDirective(action=crossref_action,
                                           target_settings=lambda key, value: [value])

    return directives


def unpack(config_dict: dict, prefix: str = "") -> dict:
    """
    Unpack the given config_dict, flattening key names recursively.
    >>> p = unpack({"one": 1, "two": 2}, prefix="snack")
    >>> p == {'snack.one': 1, 'snack.two': 2}
    True
    >>> p = unpack({"a": {"foo": 1, "bar": 2}})
    >>> p == {'a.foo': 1, 'a.bar': 2}
    True
    >>> unpack({"a": {}}) == {'a': {}}
    True
    """
    real_prefix = "" if prefix == "" else prefix + "."
    output_dict = {}
    for key, value in config_dict.items():
        if isinstance(value, dict) and len(value) > 0:
            output_dict.update(unpack(value, real_prefix + key))
        else:
            output_dict[real_prefix + key] = value
    return output_dict


def fold_dict_settings(config_dict: dict, dict_keys: Iterable[str]) -> dict:
    """
    Gather the flattened entries of dict-typed settings back into one dict value each.
    A dict value set directly on the setting (e.g. by set_setting) wins over flattened entries.
    >>> p = fold_dict_settings({"a.env.X": "1", "a.env.Y": "2", "a.other": 3}, ["a.env"])
    >>> p == {"a.env": {"X": "1", "Y": "2"}, "a.other": 3}
    True

    :param config_dict: Unpacked config.
    :param dict_keys: Settings declared as dicts.
    :return: New config with the dict settings folded.
    """
    output_dict = dict(config_dict)
    for setting in dict_keys:
        prefix = setting + "."
        entries = [k for k in output_dict if k.startswith(prefix)]
        if len(entries) == 0:
            continue
        folded = {k[len(prefix):]: output_dict.pop(k) for k in entries}
        direct = output_dict.get(setting)
        if isinstance(direct, dict):
            folded.update(direct)
        output_dict[setting] = folded
    return output_dict


def reverse_unpack(input_dict: dict) -> dict:
    """
    Reverse the effects of unpack().
    >>> p = reverse_unpack({"a.b": 1})
    >>> p == {"a": {"b": 1}}
    True
    """
    output_dict = {}  # type: Dict[str, Any]

    def get_subdict(parts: List[str], current_root: dict) -> dict:
        if len(parts) == 0:
            return current_root
        if parts[0] not in current_root:
            current_root[parts[0]] = {}
        return get_subdict(parts[1:], current_root[parts[0]])

    for key, value in input_dict.items():
        key_parts = key.split(".")
        containing_dict = get_subdict(key_parts[:-1], output_dict)
        containing_dict[key_parts[-1]] = value
    return output_dict


def update_and_expand_meta(config_dict: dict, meta_dict: dict) -> dict:
    """
    Expand the meta directives for the given config dict and return a new
    dictionary containing the updated settings with respect to the base config_dict.
    Lazy meta directives are carried over untouched and resolved by combine_configs().

    :param config_dict: Base config.
    :param meta_dict: Dictionary with potentially new meta directives.
    :return: New dictionary with meta_dict updating config_dict.
    """
    assert isinstance(config_dict, dict)
    assert isinstance(meta_dict, dict)

    newdict = deepdict(config_dict)
    meta_dict = deepdict(meta_dict)

    meta_len = len("_meta")
    for meta_key in [k for k in meta_dict.keys() if k.endswith("_meta")]:
        setting = meta_key[:-meta_len]
        meta_type = meta_dict[meta_key]
        if not isinstance(meta_type, str):
            raise TypeError("meta_type was not a string: " + repr(meta_type))
        if setting not in meta_dict:
            raise ValueError(f"Meta directive {meta_key} has no accompanying setting {setting}")

        if meta_type.startswith("lazy"):
            base_type = meta_type[len("lazy"):]
            if base_type not in get_meta_directives():
                raise ValueError(f"The type of lazy meta variable {meta_key} is not supported ({meta_type})")
            if setting in get_meta_directives()[base_type].target_settings(setting, meta_dict[setting]):
                raise ValueError(f"Lazy setting {setting} cannot depend on itself")
            newdict[setting] = meta_dict[setting]
            newdict[meta_key] = meta_type
        else:
            try:
                meta_func = get_meta_directives()[meta_type].action
            except KeyError as exc:
                raise ValueError(f"The type of meta variable {meta_key} is not supported ({meta_type})") from exc
            meta_func(newdict, setting, meta_dict[setting])
            # A plain directive replaces any lazy one from a lower layer.
            newdict.pop(meta_key, None)

        del meta_dict[meta_key]
        del meta_dict[setting]

    for key, value in meta_dict.items():
        newdict[key] = value
        # A plain value overrides any lazy directive set by a lower layer.
        newdict.pop(key + "_meta", None)
    return newdict


def combine_configs(configs: Iterable[dict]) -> dict:
    """
    Combine the given list of *unpacked* configs into a single config.
    Later configs in the list will override the earlier configs.

    :param configs: List of configs.
    :return: A loaded config dictionary.
    """
    expanded_config = reduce(update_and_expand_meta, configs, {})  # type: dict

    lazy_metas = {}  # type: Dict[str, Tuple[str, Any]]
    meta_len = len("_meta")
    for meta_key in [k for k in expanded_config.keys() if k.endswith("_meta")]:
        setting = meta_key[:-meta_len]
        lazy_meta_type = expanded_config[meta_key]  # type: str
        assert lazy_meta_type.startswith("lazy"), "Should have only lazy metas left now"
        lazy_metas[setting] = (lazy_meta_type[len("lazy"):], expanded_config[setting])
        del expanded_config[meta_key]
        del expanded_config[setting]

    final_dict = expanded_config
    if len(lazy_metas) > 0:
        # key1 -> key2 means key2 depends on key1
        graph = {setting: ([], []) for setting in lazy_metas}  # type: Dict[str, Tuple[List[str], List[str]]]
        for setting, (meta_type, value) in lazy_metas.items():
            for target in get_meta_directives()[meta_type].target_settings(setting, value):
                if target in lazy_metas:
                    graph[target][0].append(setting)
                    graph[setting][1].append(target)

        starting_nodes = sorted(k for k, v in graph.items() if len(v[1]) == 0)
        ordered = topological_sort(graph, starting_nodes)
        if len(ordered) != len(graph):
            raise ValueError("There appears to be a loop of lazy settings")

        for setting in ordered:
            meta_type, value = lazy_metas[setting]
            get_meta_directives()[meta_type].action(final_dict, setting, value)

    for key in SettingsDatabase.internal_keys():
        final_dict.pop(key, None)

    return final_dict


class NamedType(Enum):
    STR = "str"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    LIST = "list"
    DICT = "dict"
    ANY = "Any"


class ConfigType(NamedTuple):
    """
    Class for a parsed configuration type.

    :param primary: the outermost type on a configuration.
    :param optional: if the type is an Optional type.
    :param secondary: the type within the type, i.e. what is in a list or the values of a dict.
    """
    primary: NamedType
    optional: bool = False
    secondary: NamedType = NamedType.ANY


PRIMARY_REGEX = re.compile(r"(\w+)")
INNER_REGEX = re.compile(r"\w+\[(.+)\]")
DICT_REGEX = re.compile(r"\w+\[(\w+), (\w+)\]")


def parse_setting_type(setting_type: str) -> ConfigType:
    """
    Parses a configuration type such as "str", "Optional[int]", "list[str]" or "dict[str, str]".
    :param setting_type: The string form of a setting configuration.
    :return: A configuration type with info about the type.
    """
    m_prim = re.search(PRIMARY_REGEX, setting_type)
    m_sec = re.search(INNER_REGEX, setting_type)

    if m_prim is None:
        raise ValueError("Not a valid configuration type: " + setting_type)
    primary_type = m_prim.group(0)

    if primary_type == "Optional":
        if m_sec is None:
            raise ValueError("Not a valid inner configuration type: " + setting_type)
        inner = parse_setting_type(m_sec.group(1))
        return inner._replace(optional=True)
    if primary_type == "list":
        if m_sec is None:
            raise ValueError("Not a valid inner configuration type: " + setting_type)
        return ConfigType(NamedType(primary_type), secondary=NamedType(m_sec.group(1).strip()))
    if primary_type == "dict":
        m_dict = re.search(DICT_REGEX, setting_type)
        if m_dict is None:
            raise ValueError("Not a valid inner dictionary type: " + setting_type)
        return ConfigType(NamedType(primary_type), secondary=NamedType(m_dict.group(2)))
    return ConfigType(NamedType(primary_type))


def coerce_from_string(value: str, setting_type: ConfigType) -> Any:
    """
    Convert a string (e.g. from an environment variable) into the given type.

    :param value: Raw string value.
    :param setting_type: Type to convert to.
    :return: Converted value.
    """
    primary = setting_type.primary
    if primary in (NamedType.STR, NamedType.ANY):
        return value
    if primary == NamedType.INT:
        return int(value)
    if primary == NamedType.FLOAT:
        return float(value)
    if primary == NamedType.BOOL:
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "y", "on"):
            return True
        if lowered in ("0", "false", "no", "n", "off"):
            return False
        raise ValueError("Not a boolean: " + value)
    if primary == NamedType.LIST:
        return value.split()
    raise ValueError("Cannot convert a string into " + primary.value)


class SettingsDatabase:
    """
    Define a database which is composed of a set of overridable configs.

    Terminology:
    - setting: a single key-value pair e.g. "magic.branch" -> "master"
    - config: a single concrete dictionary of settings.
    - database: a collection of configs with a specific override hierarchy.

    Order of precedence (in increasing order):
    - builtins
    - core
    - installers
    - environment (environment variables such as MAGIC_PREFIX or PDK_ROOT)
    - project
    - runtime (settings updated during a run)
    """

    def __init__(self) -> None:
        self.builtins = []  # type: List[dict]
        self.core = []  # type: List[dict]
        self.installers = []  # type: List[dict]
        self.environment = []  # type: List[dict]
        self.project = []  # type: List[dict]
        self._runtime = {}  # type: Dict[str, Any]

        self.__config_cache = {}  # type: dict
        self.__config_cache_dirty = True  # type: bool

        self.__config_types = {}  # type: Dict[str, str]

        self.defaults = {}  # type: dict

        self.logger = ForgeLogging.context("config")  # type: ForgeLoggingContext

    @property
    def runtime(self) -> List[dict]:
        return [self._runtime]

    @staticmethod
    def internal_keys() -> Set[str]:
        """Internal keys that shouldn't show up in any final config."""
        return {_CONFIG_PATH_KEY}

    def get_config(self) -> dict:
        """
        Get the config of this database after all the overrides have been dealt with.
        """
        if self.__config_cache_dirty:
            self.__config_cache = fold_dict_settings(
                combine_configs([{}] + self.builtins + self.core + self.installers + self.environment +
                                self.project + self.runtime),
                self.dict_settings())
            self.__config_cache_dirty = False
        return self.__config_cache

    def get_config_types(self) -> Dict[str, str]:
        """
        Get the types for the configuration of a database.
        """
        return self.__config_types

    def dict_settings(self) -> List[str]:
        """Settings whose declared type is a dict."""
        return [k for k, v in self.get_config_types().items() if parse_setting_type(v).primary == NamedType.DICT]

    def get_database_json(self) -> str:
        """Get the database (get_config) in JSON form as a string."""
        return json.dumps(self.get_config(), sort_keys=True, indent=4, separators=(',', ': '))

    def __getitem__(self, key: str) -> Any:
        """Alias for get_setting()."""
        return self.get_setting(key)

    def __contains__(self, item: str) -> bool:
        """Alias for has_setting()."""
        return self.has_setting(item)

    def get_setting(self, key: str, nullvalue: Any = None, check_type: bool = True) -> Any:
        """
        Retrieve the given key.

        :param key: Desired key.
        :param nullvalue: Value to return out for nulls.
        :param check_type: Flag to enforce type checking
        :return: The given config
        """
        if key not in self.get_config():
            raise KeyError("Key " + key + " is missing")
        if check_type:
            self.check_setting(key)
        value = self.get_config()[key]
        return nullvalue if value is None else value

    def set_setting(self, key: str, value: Any) -> None:
        """
        Set the given key. The setting will be placed into the runtime dictionary.

        :param key: Key
        :param value: Value for key
        """
        self._runtime[key] = value
        self.__config_cache_dirty = True

    def has_setting(self, key: str) -> bool:
        """
        Check if the given key exists in the database.

        :param key: Desired key.
        :return: True if the given setting exists.
        """
        return key in self.get_config()

    def get_setting_type(self, key: str) -> ConfigType:
        """
        Get the parsed type of a given key.

        :param key: Desired key.
        :return: Parsed type of the key.
        """
        if key not in self.get_config_types():
            raise KeyError(f"Key type {key} is missing")
        return parse_setting_type(self.get_config_types()[key])

    def check_setting(self, key: str) -> bool:
        """
        Checks a setting for correct typing.
        Raises TypeError if the value does not match the declared type.
        """
        if key not in self.get_config_types():
            self.logger.debug(f"Key {key} is not associated with a type")
            return True
        exp_value_type = self.get_setting_type(key)

        value = self.get_config()[key]
        if value is None:
            if not exp_value_type.optional:
                raise TypeError(f"Key {key} is missing and non-optional")
            return True

        if exp_value_type.primary == NamedType.ANY:
            return True
        value_type_primary = type(value).__name__
        if value_type_primary != exp_value_type.primary.value:
            raise TypeError(f"Expected primary type {exp_value_type.primary.value} for {key}, got type {value_type_primary}")

        if exp_value_type.secondary != NamedType.ANY:
            contained = []  # type: List[Any]
            if isinstance(value, list):
                contained = value
            elif isinstance(value, dict):
                contained = list(value.values())
            for v in contained:
                if type(v).__name__ != exp_value_type.secondary.value:
                    raise TypeError(f"Expected secondary type {exp_value_type.secondary.value} for {key}, got type {type(v).__name__}")
        return True

    def update_core(self, core_config: List[dict], core_config_types: List[dict]) -> None:
        """
        Update the core config with the given core config.
        """
        self.core = core_config
        self.update_defaults(core_config)
        self.update_types(core_config_types)
        self.__config_cache_dirty = True

    def update_installers(self, installer_config: List[dict], installer_config_types: List[dict]) -> None:
        """
        Update the installers config with the given installer configs.
        """
        self.installers = installer_config
        self.update_defaults(installer_config)
        self.update_types(installer_config_types)
        self.__config_cache_dirty = True

    def update_environment(self, environment_config: List[dict]) -> None:
        """
        Update the environment config with the given environment config.
        """
        self.environment = environment_config
        self.__config_cache_dirty = True

    def update_project(self, project_config: List[dict]) -> None:
        """
        Update the project config with the given project config.
        """
        self.project = project_config
        self.__config_cache_dirty = True

    def update_builtins(self, builtins_config: List[dict]) -> None:
        """
        Update the builtins config with the given builtins config.
        """
        self.builtins = builtins_config
        self.__config_cache_dirty = True

    def update_defaults(self, default_configs: List[dict]) -> None:
        """
        Update the default configs with the given config list.
        """
        for c in default_configs:
            self.defaults = add_dicts(self.defaults, c)

    def update_types(self, config_types: List[dict]) -> None:
        """
        Update the types config with the given types config.
        """
        for types in config_types:
            for k, v in types.items():
                if k == _CONFIG_PATH_KEY:
                    continue
                # Validate the type string early so that typos surface at load time.
                parse_setting_type(v)
                self.__config_types[k] = v
        self.__config_cache_dirty = True

    def environment_config(self, environ: Optional[Mapping[str, str]] = None) -> dict:
        """
        Build a config from the environment variables in ENVIRONMENT_OVERRIDES,
        converting each value to the declared type of its setting.

        :param environ: Environment to read. Defaults to os.environ.
        :return: Unpacked config with the overridden settings.
        """
        if environ is None:
            environ = os.environ
        config = {}  # type: Dict[str, Any]
        for variable, key in ENVIRONMENT_OVERRIDES.items():
            raw = environ.get(variable, "")
            if raw == "":
                continue
            if key in self.get_config_types():
                try:
                    config[key] = coerce_from_string(raw, self.get_setting_type(key))
                except ValueError as e:
                    raise ValueError(f"Environment variable {variable}={raw} is not a valid {key}") from e
            else:
                config[key] = raw
            self.logger.debug(f"{key} overridden by ${variable}")
        return config


def load_config_from_string(contents: str, is_yaml: bool, path: str = "unspecified") -> dict:
    """
    Load config from a string by loading it and unpacking it.

    :param contents: Contents of the config.
    :param is_yaml: True if the contents are yaml.
    :param path: Path to the folder/package where the config file is located.
    :return: Loaded config dictionary, unpacked.
    """
    unpacked = unpack(load_yaml(contents) if is_yaml else json.loads(contents))
    unpacked[_CONFIG_PATH_KEY] = path
    return unpacked


def load_config_from_file(path: str) -> dict:
    """
    Load a .yml/.yaml or .json config file.

    :param path: Path to the config file.
    :return: Loaded config dictionary, unpacked.
    """
    with open(path, "r", encoding="utf-8") as f:
        contents = f.read()
    is_yaml = path.endswith(".yml") or path.endswith(".yaml")
    return load_config_from_string(contents, is_yaml, os.path.dirname(os.path.abspath(path)))


def load_config_from_defaults(package: str, types: bool = False) -> Tuple[List[dict], List[dict]]:
    """
    Load config from a package's defaults.

    :param package: Package name
    :param types: True if the types file(s) is to also be read
    :return: Loaded config dictionaries and type dictionaries
    """
    package_path = importlib.resources.files(package)
    yaml_file = package_path / "defaults.yml"
    yaml_types_file = package_path / "defaults_types.yml"
    config_list = []  # type: List[dict]
    config_types_list = []  # type: List[dict]
    if yaml_file.is_file():
        config_list.append(load_config_from_string(yaml_file.read_text(), True, str(package_path)))
    if yaml_types_file.is_file() and types:
        config_types_list.append(load_config_from_string(yaml_types_file.read_text(), True, str(package_path)))
    return (config_list, config_types_list)
