"""Settings for the topic client."""

from typing import Any, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from topic_client.app.domain.models import BrokerConfiguration, ClientOptions, ExchangeDescriptor


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    broker_protocol: str = Field("amqp", validation_alias="BROKER_PROTOCOL")
    broker_host: str = Field(..., validation_alias="BROKER_HOST")
    broker_port: int = Field(5672, validation_alias="BROKER_PORT")
    broker_user: str = Field(..., validation_alias="BROKER_USER")
    broker_password: str = Field(..., validation_alias="BROKER_PASSWORD")
    broker_vhost: str = Field("/", validation_alias="BROKER_VHOST")
    broker_locale: str = Field("en_US", validation_alias="BROKER_LOCALE")
    broker_frame_max: Optional[int] = Field(None, validation_alias="BROKER_FRAME_MAX")
    broker_heartbeat: Optional[int] = Field(None, validation_alias="BROKER_HEARTBEAT")

    exchange_name: str = Field(..., validation_alias="EXCHANGE_NAME")
    exchange_type: str = Field("topic", validation_alias="EXCHANGE_TYPE")
    topic: str = Field(..., validation_alias="TOPIC")

    consume: bool = Field(True, validation_alias="CONSUME")
    acknowledge: bool = Field(True, validation_alias="ACKNOWLEDGE")

    transport_backend: str = Field("rabbitmq", validation_alias="TRANSPORT_BACKEND")

    def broker_configuration(self) -> BrokerConfiguration:
        # heartbeat/frame_max only when set, so the broker URL leaves them to aio-pika otherwise
        tuning: dict[str, Any] = {}
        if self.broker_frame_max is not None:
            tuning["frame_max"] = self.broker_frame_max
        if self.broker_heartbeat is not None:
            tuning["heartbeat"] = self.broker_heartbeat
        return BrokerConfiguration(
            protocol=self.broker_protocol,
            hostname=self.broker_host,
            port=self.broker_port,
            username=self.broker_user,
            password=self.broker_password,
            vhost=self.broker_vhost,
            locale=self.broker_locale,
            exchange=ExchangeDescriptor(name=self.exchange_name, type=self.exchange_type),
            **tuning,
        )

    def client_options(self) -> ClientOptions:
        return ClientOptions(consume=self.consume, acknowledge=self.acknowledge)
