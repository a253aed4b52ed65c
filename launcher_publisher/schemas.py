from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, constr
from pydantic.alias_generators import to_camel


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProfileRebuildRequest(_ApiModel):
    """Rebuild request for one profile.

    Blank strings mean "not specified" and fall back to profile or server
    values, then to configured defaults.
    """

    loader_type: constr(max_length=32) = ""
    mc_version: constr(max_length=32) = ""
    client_version: constr(max_length=64) = ""
    jvm_args_default: constr(max_length=2048) = ""
    game_args_default: constr(max_length=2048) = ""
    java_runtime_path: constr(max_length=512) = ""
    java_runtime_artifact_key: constr(max_length=512) = ""
    launch_mode: constr(max_length=16) = "auto"
    launch_main_class: constr(max_length=512) = ""
    launch_classpath: constr(max_length=4096) = ""
    source_sub_path: constr(max_length=256) = ""
    publish_to_servers: bool = True

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "loaderType": "fabric",
                "mcVersion": "1.21.1",
                "publishToServers": True,
            }
        },
    )


class PreflightCheck(_ApiModel):
    """One check of a setup-wizard preflight run.

    Fields are loose on input; invalid checks are dropped during
    normalization instead of failing the whole request.
    """

    id: Optional[str] = None
    label: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None


class PreflightRunCreate(_ApiModel):
    checks: List[PreflightCheck] = Field(default_factory=list)


class ProfileCreate(_ApiModel):
    name: constr(min_length=1, max_length=128)
    slug: constr(min_length=1, max_length=64)
    description: constr(max_length=4096) = ""
    enabled: bool = True
    jvm_args_default: constr(max_length=2048) = ""
    game_args_default: constr(max_length=2048) = ""
    bundled_java_path: constr(max_length=512) = ""
    bundled_runtime_key: constr(max_length=512) = ""


class ServerCreate(_ApiModel):
    name: constr(min_length=1, max_length=128)
    address: constr(min_length=1, max_length=255)
    port: int = Field(default=25565, ge=1, le=65535)
    loader_type: constr(max_length=32) = "vanilla"
    mc_version: constr(max_length=32) = "1.21.1"
    enabled: bool = True
    order: int = 100
