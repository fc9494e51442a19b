import os
from typing import Any, Dict, List, Literal, Tuple, Type

import yaml
from pydantic import BaseModel
from pydantic.fields import FieldInfo
from pydantic_settings import (BaseSettings, PydanticBaseSettingsSource,
                               SettingsConfigDict)

from oracle_node.model import OracleKind


class YamlSettingsConfigDict(SettingsConfigDict):
    yaml_file: str | None


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """
    A simple settings source class that loads variables from a YAML file

    Note: slightly adapted version of JsonConfigSettingsSource from docs.
    """

    _yaml_data: Dict[str, Any] | None = None

    @property
    def yaml_data(self) -> Dict[str, Any]:
        if self._yaml_data is None:
            yaml_file = self.config.get("yaml_file")
            if yaml_file is not None and os.path.exists(yaml_file):
                with open(yaml_file, mode="r", encoding="utf-8") as f:
                    self._yaml_data = yaml.safe_load(f) or {}
            else:
                self._yaml_data = {}
        return self._yaml_data  # type: ignore

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> Tuple[Any, str, bool]:
        field_value = self.yaml_data.get(field_name)
        return field_value, field_name, False

    def prepare_field_value(
        self, field_name: str, field: FieldInfo, value: Any, value_is_complex: bool
    ) -> Any:
        return value

    def __call__(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {}

        for field_name, field in self.settings_cls.model_fields.items():
            field_value, field_key, value_is_complex = self.get_field_value(
                field, field_name
            )
            field_value = self.prepare_field_value(
                field_name, field, field_value, value_is_complex
            )
            if field_value is not None:
                d[field_key] = field_value

        return d


class ProxyConfig(BaseModel):
    host: str = ""
    port: int = 8080
    username: str = ""
    password: str = ""


LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "FATAL", "CRITICAL"]


class LogConfig(BaseModel):
    dir: str = "logs"
    level: LogLevel = "INFO"
    filename: str = "oracle-node.log"


class ChainConfig(BaseModel):
    rpc_url: str = "http://localhost:8545"
    # websocket endpoint for live events, polling over rpc_url is used when empty
    ws_url: str = ""
    coordinator_address: str = ""
    secret_key: str = ""
    tx_timeout: float = 30
    block_chunk_size: int = 1000
    rpc_retries: int = 5
    poll_interval: float = 2


class StorageConfig(BaseModel):
    download_base_url: str = "https://arweave.net"
    upload_base_url: str = "https://node1.bundlr.network"
    upload_key: str | None = None
    byte_limit: int = 1024
    timeout: float = 30


class SchedulerConfig(BaseModel):
    concurrency: int = 4
    max_timeout: float = 150
    max_steps: int = 10
    provider_retries: int = 3


class SubmissionConfig(BaseModel):
    max_attempts: int = 4
    backoff_min: float = 0.3
    backoff_max: float = 10
    gas_price_hikes: List[int] = [0, 12, 24, 36]


class EncoderConfig(BaseModel):
    # treat 64 hex char outputs as already uploaded content-store ids
    hex_passthrough: bool = True


class NodeConfig(BaseModel):
    kinds: List[OracleKind] = []
    models: List[str] = []
    validator_model: str = "gpt-4o"
    pipeline_workers: int = 16
    # finished tasks whose status stays queryable
    finished_history: int = 1024


class BackendConfig(BaseModel):
    url: str = ""
    timeout: float = 300


class Config(BaseSettings):
    log: LogConfig = LogConfig()

    chain: ChainConfig = ChainConfig()
    storage: StorageConfig = StorageConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    submission: SubmissionConfig = SubmissionConfig()
    encoder: EncoderConfig = EncoderConfig()
    node: NodeConfig = NodeConfig()
    backend: BackendConfig = BackendConfig()
    proxy: ProxyConfig | None = None

    model_config = YamlSettingsConfigDict(
        env_nested_delimiter="__",
        yaml_file=os.getenv("ORACLE_NODE_CONFIG", "config.yml"),
        env_file=".env",
        env_prefix="on_",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            YamlConfigSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )


_default_config: Config | None = None


def get_config() -> Config:
    global _default_config

    if _default_config is None:
        _default_config = Config()  # type: ignore

    return _default_config


def set_config(config: Config):
    global _default_config
    _default_config = config
