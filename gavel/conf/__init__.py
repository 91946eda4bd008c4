from typing import Literal, Optional

from pydantic import BaseModel

from gavel.utils import env, log
from gavel.utils.env import EnvVarSpec

logger = log.get_logger(__name__)


def _parse_bool(x: str) -> bool:
    return x.lower() == "true"


#### Types ####

class HttpServerConf(BaseModel):
    host: str
    port: int
    autoreload: bool

class EngineConf(BaseModel):
    max_retries: int = 5
    anti_sniping_enabled: bool = True
    anti_sniping_window_minutes: int = 10
    enforce_bid_increment: bool = True
    sweep_interval_seconds: int = 60
    reminder_window_minutes: int = 60
    store_backend: Literal["memory", "couchbase"] = "memory"
    scheduler_enabled: bool = True

class CouchbaseConf(BaseModel):
    username: str
    password: str
    bucket: str
    host: str
    protocol: Literal["couchbase", "couchbases"]
    scope: str = "_default"

#### Env Vars ####

## Logging ##

LOG_LEVEL = EnvVarSpec(id="LOG_LEVEL", default="INFO")

## HTTP ##

HTTP_HOST = EnvVarSpec(id="HTTP_HOST", default="0.0.0.0")

HTTP_PORT = EnvVarSpec(id="HTTP_PORT", default="8000", parse=int, type=(int, ...))

HTTP_AUTORELOAD = EnvVarSpec(
    id="HTTP_AUTORELOAD",
    parse=_parse_bool,
    default="false",
    type=(bool, ...),
)

## Engine ##

GAVEL_MAX_RETRIES = EnvVarSpec(
    id="GAVEL_MAX_RETRIES",
    default="5",
    parse=int,
    type=(int, ...),
)

GAVEL_ANTI_SNIPING_ENABLED = EnvVarSpec(
    id="GAVEL_ANTI_SNIPING_ENABLED",
    default="true",
    parse=_parse_bool,
    type=(bool, ...),
)

GAVEL_ANTI_SNIPING_WINDOW_MINUTES = EnvVarSpec(
    id="GAVEL_ANTI_SNIPING_WINDOW_MINUTES",
    default="10",
    parse=int,
    type=(int, ...),
)

GAVEL_ENFORCE_BID_INCREMENT = EnvVarSpec(
    id="GAVEL_ENFORCE_BID_INCREMENT",
    default="true",
    parse=_parse_bool,
    type=(bool, ...),
)

GAVEL_SWEEP_INTERVAL_SECONDS = EnvVarSpec(
    id="GAVEL_SWEEP_INTERVAL_SECONDS",
    default="60",
    parse=int,
    type=(int, ...),
)

GAVEL_REMINDER_WINDOW_MINUTES = EnvVarSpec(
    id="GAVEL_REMINDER_WINDOW_MINUTES",
    default="60",
    parse=int,
    type=(int, ...),
)

GAVEL_STORE_BACKEND = EnvVarSpec(id="GAVEL_STORE_BACKEND", default="memory")

GAVEL_SCHEDULER_ENABLED = EnvVarSpec(
    id="GAVEL_SCHEDULER_ENABLED",
    default="true",
    parse=_parse_bool,
    type=(bool, ...),
)

GAVEL_INTERNAL_API_KEY = EnvVarSpec(id="GAVEL_INTERNAL_API_KEY", is_optional=True)

## Couchbase ##
## Only validated when GAVEL_STORE_BACKEND=couchbase.

COUCHBASE_USERNAME = EnvVarSpec(id="COUCHBASE_USERNAME")
COUCHBASE_PASSWORD = EnvVarSpec(id="COUCHBASE_PASSWORD")
COUCHBASE_BUCKET = EnvVarSpec(id="COUCHBASE_BUCKET")
COUCHBASE_HOST = EnvVarSpec(id="COUCHBASE_HOST")
COUCHBASE_PROTOCOL = EnvVarSpec(id="COUCHBASE_PROTOCOL", default="couchbase")
COUCHBASE_SCOPE = EnvVarSpec(id="COUCHBASE_SCOPE", default="_default")

#### Validation ####
VALIDATED_ENV_VARS = [
    LOG_LEVEL,
    HTTP_AUTORELOAD,
    HTTP_PORT,
    GAVEL_MAX_RETRIES,
    GAVEL_ANTI_SNIPING_ENABLED,
    GAVEL_ANTI_SNIPING_WINDOW_MINUTES,
    GAVEL_ENFORCE_BID_INCREMENT,
    GAVEL_SWEEP_INTERVAL_SECONDS,
    GAVEL_REMINDER_WINDOW_MINUTES,
    GAVEL_STORE_BACKEND,
    GAVEL_SCHEDULER_ENABLED,
    GAVEL_INTERNAL_API_KEY,
]

COUCHBASE_ENV_VARS = [
    COUCHBASE_USERNAME,
    COUCHBASE_PASSWORD,
    COUCHBASE_BUCKET,
    COUCHBASE_HOST,
    COUCHBASE_PROTOCOL,
    COUCHBASE_SCOPE,
]

def validate() -> bool:
    specs = list(VALIDATED_ENV_VARS)
    if env.parse(GAVEL_STORE_BACKEND) == "couchbase":
        specs.extend(COUCHBASE_ENV_VARS)
    return env.validate(specs)

#### Getters ####

def get_log_level() -> str:
    return env.parse(LOG_LEVEL)

def get_http_conf() -> HttpServerConf:
    return HttpServerConf(
        host=env.parse(HTTP_HOST),
        port=env.parse(HTTP_PORT),
        autoreload=env.parse(HTTP_AUTORELOAD),
    )

def get_engine_conf() -> EngineConf:
    return EngineConf(
        max_retries=max(0, env.parse(GAVEL_MAX_RETRIES)),
        anti_sniping_enabled=env.parse(GAVEL_ANTI_SNIPING_ENABLED),
        anti_sniping_window_minutes=max(1, env.parse(GAVEL_ANTI_SNIPING_WINDOW_MINUTES)),
        enforce_bid_increment=env.parse(GAVEL_ENFORCE_BID_INCREMENT),
        sweep_interval_seconds=max(1, env.parse(GAVEL_SWEEP_INTERVAL_SECONDS)),
        reminder_window_minutes=max(1, env.parse(GAVEL_REMINDER_WINDOW_MINUTES)),
        store_backend=env.parse(GAVEL_STORE_BACKEND),
        scheduler_enabled=env.parse(GAVEL_SCHEDULER_ENABLED),
    )

def get_couchbase_conf() -> CouchbaseConf:
    return CouchbaseConf(
        username=env.parse(COUCHBASE_USERNAME),
        password=env.parse(COUCHBASE_PASSWORD),
        bucket=env.parse(COUCHBASE_BUCKET),
        host=env.parse(COUCHBASE_HOST),
        protocol=env.parse(COUCHBASE_PROTOCOL),
        scope=env.parse(COUCHBASE_SCOPE),
    )

def get_internal_api_key() -> Optional[str]:
    return env.parse(GAVEL_INTERNAL_API_KEY)
