from pydantic_settings import BaseSettings
from typing import List
from pydantic import model_validator


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./dockout.db"
    ENVIRONMENT: str = "development"
    AUTO_CREATE_TABLES: bool = True
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    DEBUG: bool = True
    APP_NAME: str = "VEP Dockout"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    ENABLE_REQUEST_ID: bool = True
    ENABLE_REQUEST_LOGGING: bool = True
    ENABLE_SECURITY_HEADERS: bool = True
    STRICT_TRANSPORT_SECURITY_SECONDS: int = 31536000
    READINESS_CHECK_DATABASE: bool = True

    # SAP OData gateway
    SAP_STOCK_MOVE_URL: str = (
        "https://sap.example.com:4443/sap/opu/odata/sap/ZSTOCK_MOVE_SRV/StockHeadSet"
    )
    SAP_TOKEN_DETAILS_URL: str = (
        "https://sap.example.com:4443/sap/opu/odata/SAP/ZWH_BATCH_UPDATE_SRV/TokenDetailsSet"
    )
    SAP_LOADED_DETAILS_URL: str = (
        "https://sap.example.com:4443/sap/opu/odata/SAP/ZWH_BATCH_UPDATE_SRV/LoadedDetailsSet"
    )
    SAP_USERNAME: str = ""
    SAP_PASSWORD: str = ""
    SAP_CLIENT: str = "300"
    DEFAULT_PLANT: str = "M251"

    # TEG logistics event API
    TEG_AUTH_URL: str = "https://beta-api-admin.transporteg.com/api/0.1/fetch/master/token"
    TEG_UPDATE_URL: str = (
        "https://beta-apis-indenting.transporteg.com/indent/api/0.1/update/wms/picking/data"
    )
    TEG_ADDITIONAL_MATERIALS_URL: str = (
        "https://beta-apis-indenting.transporteg.com/indent/api/0.2/update/wms/additional/material"
    )
    TEG_USERNAME: str = ""
    TEG_PASSWORD: str = ""

    UPSTREAM_TIMEOUT_SECONDS: float = 60.0
    UPSTREAM_VERIFY_SSL: bool = True

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() in {"prod", "production"}

    @model_validator(mode="after")
    def validate_production_safety(self):
        if not self.is_production:
            return self

        if "sqlite" in self.DATABASE_URL.lower():
            raise ValueError("SQLite is not allowed when ENVIRONMENT is production.")

        if not self.SAP_USERNAME or not self.SAP_PASSWORD:
            raise ValueError("SAP_USERNAME and SAP_PASSWORD must be set in production.")

        if not self.TEG_USERNAME or not self.TEG_PASSWORD:
            raise ValueError("TEG_USERNAME and TEG_PASSWORD must be set in production.")

        if self.AUTO_CREATE_TABLES:
            raise ValueError("AUTO_CREATE_TABLES must be false in production; use Alembic migrations.")

        return self


settings = Settings()
