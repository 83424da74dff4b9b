"""Translation of Netatmo modules into a Homie device tree.

Which properties a node gets depends on the capability fields present on the
module record. The fixed properties are listed declaratively in
MODULE_PROPERTIES as (predicate, reader, property shape) entries; measurement
properties are derived from the module's data_type list.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from netatmo_homie_bridge.homie import DeviceDescription, HomieDevice, HomieNode, HomieProperty
from netatmo_homie_bridge.models import Module

LAST_SEEN_FORMAT = "%y-%m-%d %H:%M:%S"

MEASUREMENT_UNITS = {
    "Temperature": "°C",
    "Humidity": "%",
    "CO2": "ppm",
    "Pressure": "mbar",
    "AbsolutePressure": "mbar",
    "Noise": "dB",
    "Rain": "mm",
    "WindStrength": "km/h",
    "GustStrength": "km/h",
    "WindAngle": "°",
    "GustAngle": "°",
}


def signal_quality(bad: int, ok: int) -> Callable[[Any], str]:
    """Build a packer bucketing a signal value; higher values are worse."""

    def pack(value: Any) -> str:
        if value >= bad:
            return f"bad ({value})"
        if value > ok:
            return f"ok ({value})"
        return f"good ({value})"

    return pack


def format_timestamp(value: Any) -> str:
    """Format a unix timestamp in local time."""
    return datetime.fromtimestamp(value).strftime(LAST_SEEN_FORMAT)


def is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


@dataclass(frozen=True)
class PropertySpec:
    """Declarative description of a capability-dependent property.

    Attributes:
        id: Property id and name.
        datatype: Homie datatype.
        applies: Whether a module has this capability.
        read: Extracts the raw value from a module.
        unit: Optional Homie unit.
        format: Optional Homie format.
        pack: Optional converter to the published string.
        validate: Optional raw value check.
    """

    id: str
    datatype: str
    applies: Callable[[Module], bool]
    read: Callable[[Module], Any]
    unit: str | None = None
    format: str | None = None
    pack: Callable[[Any], str] | None = None
    validate: Callable[[Any], bool] | None = None

    def build(self) -> HomieProperty:
        return HomieProperty(
            id=self.id,
            name=self.id,
            datatype=self.datatype,
            unit=self.unit,
            format=self.format,
            pack=self.pack,
            validate=self.validate,
        )


MODULE_PROPERTIES: tuple[PropertySpec, ...] = (
    # 90=low, 60=highest
    PropertySpec(
        id="radiosignal",
        datatype="string",
        applies=lambda m: m.rf_status is not None,
        read=lambda m: m.rf_status,
        pack=signal_quality(bad=90, ok=60),
        validate=is_number,
    ),
    # 86=bad, 56=good
    PropertySpec(
        id="wifisignal",
        datatype="string",
        applies=lambda m: m.wifi_status is not None,
        read=lambda m: m.wifi_status,
        pack=signal_quality(bad=86, ok=56),
        validate=is_number,
    ),
    PropertySpec(
        id="reachable",
        datatype="boolean",
        applies=lambda m: m.reachable is not None,
        read=lambda m: m.reachable,
    ),
    PropertySpec(
        id="battery",
        datatype="integer",
        applies=lambda m: m.battery_percent is not None,
        read=lambda m: m.battery_percent,
        unit="%",
        format="0:100",
    ),
    PropertySpec(
        id="last-seen",
        datatype="string",
        applies=lambda m: m.seen_at is not None,
        read=lambda m: m.seen_at,
        pack=format_timestamp,
        validate=is_number,
    ),
)


def measurement_property(field_name: str) -> HomieProperty:
    property_id = field_name.lower()
    return HomieProperty(
        id=property_id,
        name=property_id,
        datatype="float",
        unit=MEASUREMENT_UNITS.get(field_name),
    )


def build_node(module: Module) -> HomieNode:
    """Build the Homie node for one module from its capabilities."""
    properties = {spec.id: spec.build() for spec in MODULE_PROPERTIES if spec.applies(module)}
    for field_name in module.data_type:
        prop = measurement_property(field_name)
        properties[prop.id] = prop
    return HomieNode(id=module.slug, name=module.display_name, type=module.type_name, properties=properties)


def index_by_slug(modules: Iterable[Module], logger: logging.Logger) -> dict[str, Module]:
    """Key modules by slug; on a collision the later module wins and a warning is logged."""
    indexed: dict[str, Module] = {}
    for module in modules:
        previous = indexed.get(module.slug)
        if previous is not None and previous.id != module.id:
            logger.warning(
                "Modules %s and %s both map to node '%s', only %s will be published",
                previous.id,
                module.id,
                module.slug,
                module.id,
            )
        indexed[module.slug] = module
    return indexed


class DeviceSynchronizer:
    """Owns the published Homie device and keeps it in line with the module list.

    Attributes:
        device_factory: Creates an unstarted HomieDevice from a description.
        device: The currently registered device, if any.
    """

    def __init__(
        self,
        device_factory: Callable[[DeviceDescription], HomieDevice],
        domain: str,
        device_id: str,
        device_name: str,
        logger: logging.Logger,
    ) -> None:
        self.device_factory = device_factory
        self.domain = domain
        self.device_id = device_id
        self.device_name = device_name
        self.logger = logger
        self.device: HomieDevice | None = None

    def describe(self, modules: Iterable[Module]) -> DeviceDescription:
        nodes = {}
        for module in modules:
            node = build_node(module)
            nodes[node.id] = node
        return DeviceDescription(domain=self.domain, id=self.device_id, name=self.device_name, nodes=nodes)

    async def rebuild(self, modules: Iterable[Module]) -> None:
        """Replace the registered device by one built from the given modules."""
        description = self.describe(modules)
        if self.device is not None:
            await self.device.stop()
            self.device = None
        device = self.device_factory(description)
        await device.start()
        self.device = device
        self.logger.info("Published device with nodes: %s", ", ".join(description.nodes) or "(none)")

    async def reconnect(self, device_factory: Callable[[DeviceDescription], HomieDevice]) -> None:
        """Switch to a new broker connection.

        The device of the previous connection is stopped through the new one, so
        retained topics of nodes that vanished while disconnected are cleared.
        The next poll registers a fresh device.
        """
        self.device_factory = device_factory
        previous, self.device = self.device, None
        if previous is None:
            return
        stale = device_factory(previous.description)
        stale.adopt(previous.published_topics)
        await stale.stop()

    async def update(self, modules: Iterable[Module]) -> None:
        """Push current module values into the registered properties."""
        if self.device is None:
            self.logger.warning("No device registered yet, skipping value update")
            return
        for module in modules:
            node = self.device.nodes.get(module.slug)
            if node is None:
                self.logger.warning("No node registered for module '%s', skipping", module.slug)
                continue
            for spec in MODULE_PROPERTIES:
                if spec.applies(module):
                    await self._set(node, spec.id, spec.read(module))
            if module.dashboard_data is None:
                self.logger.warning("No dashboard data received for module '%s'", module.slug)
                continue
            for field_name in module.data_type:
                value = module.dashboard_data.get(field_name)
                if value is None:
                    self.logger.debug("Module '%s' reported no value for %s", module.slug, field_name)
                    continue
                await self._set(node, field_name.lower(), value)

    async def _set(self, node: HomieNode, property_id: str, value: Any) -> None:
        prop = node.properties.get(property_id)
        if prop is None:
            self.logger.debug("Node '%s' has no property '%s' yet, skipping", node.id, property_id)
            return
        try:
            await prop.set(value)
        except ValueError as e:
            self.logger.warning("Could not publish %s/%s: %s", node.id, property_id, e)
