"""Minimal Homie 4.0 device publisher on top of aiomqtt.

Only what a read-only sensor bridge needs: a device made of nodes made of
non-settable, retained properties. The whole device description is published
by start(); stop() marks the device disconnected and clears every retained
attribute and value it published, so removed nodes vanish from the broker.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import aiomqtt

HOMIE_VERSION = "4.0.0"
DATATYPES = ("string", "integer", "float", "boolean")
QOS = 1


def last_will(domain: str, device_id: str) -> aiomqtt.Will:
    """Last-will marking the device as lost when the connection drops."""
    return aiomqtt.Will(topic=f"{domain}/{device_id}/$state", payload="lost", qos=QOS, retain=True)


@dataclass
class HomieProperty:
    """A read-only, retained Homie property.

    Attributes:
        id: Topic segment of the property.
        name: Human readable name.
        datatype: One of string, integer, float, boolean.
        unit: Optional unit, e.g. "°C".
        format: Optional format, e.g. "0:100".
        pack: Optional converter from the raw value to the published string.
        validate: Optional check of the raw value, used together with pack.
        value: Last value published; setting the same value again publishes nothing.
    """

    id: str
    name: str
    datatype: str
    unit: str | None = None
    format: str | None = None
    pack: Callable[[Any], str] | None = None
    validate: Callable[[Any], bool] | None = None
    value: Any = field(default=None, init=False)
    _device: "HomieDevice | None" = field(default=None, init=False, repr=False)
    _node_id: str = field(default="", init=False, repr=False)

    def __post_init__(self) -> None:
        if self.datatype not in DATATYPES:
            raise ValueError(f"Unsupported Homie datatype: {self.datatype!r}")

    def payload(self, value: Any) -> str:
        """Convert a raw value into its Homie payload.

        Raises:
            ValueError: If the value does not fit the datatype.
        """
        if self.validate is not None and not self.validate(value):
            raise ValueError(f"Invalid value for property {self.id!r}: {value!r}")
        if self.datatype == "boolean":
            if not isinstance(value, bool):
                raise ValueError(f"Property {self.id!r} expects a boolean, got {value!r}")
            return "true" if value else "false"
        if self.datatype == "integer":
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"Property {self.id!r} expects an integer, got {value!r}")
            return str(value)
        if self.datatype == "float":
            if isinstance(value, bool) or not isinstance(value, int | float):
                raise ValueError(f"Property {self.id!r} expects a number, got {value!r}")
            return str(float(value))
        return self.pack(value) if self.pack is not None else str(value)

    async def set(self, value: Any) -> None:
        """Publish a new value unless it equals the last one.

        Raises:
            ValueError: If the value does not fit the datatype.
            RuntimeError: If the property does not belong to a device.
        """
        if self._device is None:
            raise RuntimeError(f"Property {self.id!r} is not attached to a device")
        payload = self.payload(value)
        if self.value is not None and value == self.value:
            return
        self.value = value
        await self._device.publish(f"{self._node_id}/{self.id}", payload)


@dataclass
class HomieNode:
    """A Homie node grouping the properties of one module."""

    id: str
    name: str
    type: str
    properties: dict[str, HomieProperty] = field(default_factory=dict)


@dataclass
class DeviceDescription:
    """Everything needed to register a Homie device."""

    domain: str
    id: str
    name: str
    nodes: dict[str, HomieNode] = field(default_factory=dict)


class HomieDevice:
    """A Homie device published through an aiomqtt client.

    Attributes:
        mqtt_client: Connected aiomqtt client.
        description: Device identity and node tree.
        logger: Logger for lifecycle events.
    """

    def __init__(self, mqtt_client: aiomqtt.Client, description: DeviceDescription, logger: logging.Logger) -> None:
        self.mqtt_client = mqtt_client
        self.description = description
        self.logger = logger
        self._published: set[str] = set()
        for node in description.nodes.values():
            for prop in node.properties.values():
                prop._device = self  # noqa: SLF001
                prop._node_id = node.id  # noqa: SLF001

    @property
    def base_topic(self) -> str:
        return f"{self.description.domain}/{self.description.id}"

    @property
    def nodes(self) -> dict[str, HomieNode]:
        return self.description.nodes

    @property
    def published_topics(self) -> frozenset[str]:
        """Retained topics this device currently holds on the broker."""
        return frozenset(self._published)

    def adopt(self, topics: Iterable[str]) -> None:
        """Take over retained topics left behind by an earlier instance, so stop() clears them too."""
        self._published.update(topics)

    async def publish(self, subtopic: str, payload: str) -> None:
        """Publish a retained message below the device topic."""
        topic = f"{self.base_topic}/{subtopic}"
        await self.mqtt_client.publish(topic, payload, qos=QOS, retain=True)
        self._published.add(topic)

    async def start(self) -> None:
        """Publish the full device description and mark the device ready."""
        await self._set_state("init")
        await self.publish("$homie", HOMIE_VERSION)
        await self.publish("$name", self.description.name)
        await self.publish("$extensions", "")
        await self.publish("$nodes", ",".join(self.nodes))
        for node in self.nodes.values():
            await self.publish(f"{node.id}/$name", node.name)
            await self.publish(f"{node.id}/$type", node.type)
            await self.publish(f"{node.id}/$properties", ",".join(node.properties))
            for prop in node.properties.values():
                prefix = f"{node.id}/{prop.id}"
                await self.publish(f"{prefix}/$name", prop.name)
                await self.publish(f"{prefix}/$datatype", prop.datatype)
                await self.publish(f"{prefix}/$settable", "false")
                await self.publish(f"{prefix}/$retained", "true")
                if prop.unit is not None:
                    await self.publish(f"{prefix}/$unit", prop.unit)
                if prop.format is not None:
                    await self.publish(f"{prefix}/$format", prop.format)
        await self._set_state("ready")
        self.logger.info("Homie device %s started with %d nodes", self.base_topic, len(self.nodes))

    async def stop(self) -> None:
        """Mark the device disconnected and clear everything else it published."""
        await self._set_state("disconnected")
        state_topic = f"{self.base_topic}/$state"
        for topic in sorted(self._published - {state_topic}):
            await self.mqtt_client.publish(topic, None, qos=QOS, retain=True)
        self._published = {state_topic}
        self.logger.info("Homie device %s stopped", self.base_topic)

    async def _set_state(self, state: str) -> None:
        await self.publish("$state", state)
