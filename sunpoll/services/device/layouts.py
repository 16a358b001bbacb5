"""
Record Layouts

Declarative field layouts for every register block the poller reads, and the
one generic decoder that walks them. A layout is an ordered list of fields;
offsets are implied by declaration order, so a layout doubles as the register
map documentation for its block.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Union

from sunpoll.common.exceptions import TruncatedDataError
from . import decoder


class FieldKind(str, Enum):
    """Register field encodings"""
    U16 = "u16"
    I16 = "i16"
    U32 = "u32"
    I32 = "i32"
    TEXT = "text"
    EPOCH = "epoch"    # u32 seconds since 1970, 0xFFFFFFFF = unset
    BITS16 = "bits16"  # raw bit mask, never scaled
    BITS32 = "bits32"
    SKIP = "skip"      # reserved / undocumented registers


# Registers per item, for kinds with a fixed size
FIXED_WIDTHS: dict[FieldKind, int] = {
    FieldKind.U16: 1,
    FieldKind.I16: 1,
    FieldKind.BITS16: 1,
    FieldKind.U32: 2,
    FieldKind.I32: 2,
    FieldKind.EPOCH: 2,
    FieldKind.BITS32: 2,
}

_READERS = {
    FieldKind.U16: decoder.read_u16,
    FieldKind.I16: decoder.read_i16,
    FieldKind.BITS16: decoder.read_u16,
    FieldKind.U32: decoder.read_u32,
    FieldKind.I32: decoder.read_i32,
    FieldKind.EPOCH: decoder.read_u32,
    FieldKind.BITS32: decoder.read_u32,
}


@dataclass(frozen=True)
class Field:
    """One named register field, optionally repeated ``count`` times"""
    name: str
    kind: FieldKind
    gain: int = 1
    width: int = 0  # Register count for TEXT and SKIP
    count: int = 1

    @property
    def item_width(self) -> int:
        if self.kind in (FieldKind.TEXT, FieldKind.SKIP):
            return self.width
        return FIXED_WIDTHS[self.kind]

    @property
    def register_count(self) -> int:
        return self.item_width * self.count

    def read_one(self, buffer: bytes, offset: int) -> tuple[Any, int]:
        """Decode a single item of this field at offset"""
        if self.kind == FieldKind.SKIP:
            return None, decoder.skip(buffer, offset, self.width)
        if self.kind == FieldKind.TEXT:
            return decoder.read_text(buffer, offset, self.width)

        raw, offset = _READERS[self.kind](buffer, offset)
        if self.gain != 1:
            return decoder.scale(raw, self.gain), offset
        return raw, offset

    def read(self, buffer: bytes, offset: int) -> tuple[Any, int]:
        """Decode the field; repeated fields come back as a tuple"""
        if self.count == 1:
            return self.read_one(buffer, offset)

        values = []
        for _ in range(self.count):
            value, offset = self.read_one(buffer, offset)
            values.append(value)
        return tuple(values), offset


@dataclass(frozen=True)
class Group:
    """
    Interleaved repetition of several fields.

    ``Group((i16("pv_voltage", 10), i16("pv_current", 100)), count=20)``
    reads voltage, current, voltage, current, ... and yields two 20-tuples.
    """
    fields: tuple[Field, ...]
    count: int

    @property
    def register_count(self) -> int:
        return sum(f.register_count for f in self.fields) * self.count

    def read_into(self, buffer: bytes, offset: int, values: dict[str, Any]) -> int:
        columns: dict[str, list[Any]] = {f.name: [] for f in self.fields}
        for _ in range(self.count):
            for f in self.fields:
                value, offset = f.read(buffer, offset)
                columns[f.name].append(value)
        for name, column in columns.items():
            values[name] = tuple(column)
        return offset


LayoutEntry = Union[Field, Group]


@dataclass(frozen=True)
class Record:
    """A decoded register block. Pure data, copied out to readers."""
    kind: str
    values: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls, kind: str) -> "Record":
        return cls(kind=kind, values={})

    @property
    def is_empty(self) -> bool:
        return not self.values

    def copy(self) -> "Record":
        # Values are scalars, strings or tuples; a shallow copy is independent
        return Record(kind=self.kind, values=dict(self.values))

    def __getitem__(self, name: str) -> Any:
        return self.values[name]


@dataclass(frozen=True)
class RecordLayout:
    """Ordered field layout of one register block"""
    kind: str
    entries: tuple[LayoutEntry, ...]

    @property
    def register_count(self) -> int:
        """Minimum number of registers a payload must carry"""
        return sum(e.register_count for e in self.entries)

    @property
    def byte_count(self) -> int:
        return self.register_count * decoder.REGISTER_BYTES

    def field_names(self) -> Iterator[str]:
        for entry in self.entries:
            for f in entry.fields if isinstance(entry, Group) else (entry,):
                if f.kind != FieldKind.SKIP:
                    yield f.name

    def epoch_field_names(self) -> tuple[str, ...]:
        return tuple(
            e.name for e in self.entries
            if isinstance(e, Field) and e.kind == FieldKind.EPOCH
        )

    def decode(self, buffer: bytes) -> Record:
        """
        Decode a payload into a Record.

        The length precondition is checked before anything is read, so a
        short payload fails as a whole and never yields a partial record.

        Raises:
            TruncatedDataError: payload shorter than the layout
        """
        if len(buffer) < self.byte_count:
            raise TruncatedDataError(
                f"{self.kind}: data length {len(buffer)} < {self.byte_count}",
                needed=self.byte_count,
                available=len(buffer),
            )

        values: dict[str, Any] = {}
        offset = 0
        for entry in self.entries:
            if isinstance(entry, Group):
                offset = entry.read_into(buffer, offset, values)
                continue
            value, offset = entry.read(buffer, offset)
            if entry.kind != FieldKind.SKIP:
                values[entry.name] = value

        return Record(kind=self.kind, values=values)


# --- field constructors -------------------------------------------------

def u16(name: str, gain: int = 1, count: int = 1) -> Field:
    return Field(name, FieldKind.U16, gain=gain, count=count)


def i16(name: str, gain: int = 1, count: int = 1) -> Field:
    return Field(name, FieldKind.I16, gain=gain, count=count)


def u32(name: str, gain: int = 1, count: int = 1) -> Field:
    return Field(name, FieldKind.U32, gain=gain, count=count)


def i32(name: str, gain: int = 1, count: int = 1) -> Field:
    return Field(name, FieldKind.I32, gain=gain, count=count)


def text(name: str, width: int) -> Field:
    return Field(name, FieldKind.TEXT, width=width)


def epoch(name: str) -> Field:
    return Field(name, FieldKind.EPOCH)


def bits16(name: str, count: int = 1) -> Field:
    return Field(name, FieldKind.BITS16, count=count)


def bits32(name: str, count: int = 1) -> Field:
    return Field(name, FieldKind.BITS32, count=count)


def reserved(width: int) -> Field:
    return Field("", FieldKind.SKIP, width=width)


# --- SUN2000 register blocks ----------------------------------------------
# Comments give the first register address of each field.

IDENTIFICATION = RecordLayout("identification", (
    text("model", 15),                       # 30000
    text("sn", 10),                          # 30015
    text("pn", 10),                          # 30025
    text("firmware_version", 15),            # 30035
    text("software_version", 15),            # 30050
    reserved(3),
    u32("protocol_version"),                 # 30068
    u16("model_id"),                         # 30070
    u16("number_of_strings"),
    u16("number_of_mppts"),
    u32("rated_power", gain=1000),           # 30073 kW
    u32("max_active_power", gain=1000),      # kW Pmax
    u32("max_apparent_power", gain=1000),    # kVA Smax
    i32("max_reactive_power_feed_to_grid", gain=1000),       # kVar Qmax
    i32("max_reactive_power_absorbed_from_grid", gain=1000),  # kVar -Qmax
    u32("max_active_capability", gain=1000),    # 30083 kW Pmax_real
    u32("max_apparent_capability", gain=1000),  # 30085 kVA Smax_real
))

PRODUCT = RecordLayout("product", (
    text("sales_area", 2),                   # 30105
    u16("software_number"),
    u16("software_version_number"),
    u16("grid_standard_code_protocol_version"),
    u16("software_unique_id"),
    u16("packages_to_upgrade"),
    u32("subpackage_information", count=10),  # 30112
))

HARDWARE_1 = RecordLayout("hardware_1", (
    bits16("functional_unit_configuration"),  # 30206
    bits32("subdevice_support_flag"),
    bits32("subdevice_in_position_flag"),
    bits32("feature_mask", count=4),          # 30211
    bits16("grid_standard_code_mask", count=32),  # 30219
))

HARDWARE_2 = RecordLayout("hardware_2", (
    bits16("monitoring_parameter_mask", count=8),  # 30300
    bits16("power_parameter_mask", count=19),      # 30308
))

HARDWARE_3 = RecordLayout("hardware_3", (
    bits16("builtin_pid_parameter_mask"),  # 30350
))

HARDWARE_5 = RecordLayout("hardware_5", (
    text("hardware_version", 15),            # 31000
    text("monitoring_board_sn", 10),
    text("monitoring_software_version", 15),
    text("primary_dsp_version", 15),
    text("slave_dsp_version", 15),
    text("cpld_version", 15),
    text("afci_version", 15),
    text("builtin_pid_version", 15),         # 31100
))

REMOTE_SIGNALLING = RecordLayout("remote_signalling", (
    bits16("single_machine_telesignalling"),  # 32000
    bits16("running_status_monitoring"),
    bits16("running_status_power"),
))

ALARM_1 = RecordLayout("alarm_1", (
    bits16("alarm", count=3),  # 32008
))

PV = RecordLayout("pv", (
    u16("device_sn_signature_code"),  # 32015
    Group((i16("pv_voltage", gain=10), i16("pv_current", gain=100)), count=20),
))

GRID = RecordLayout("grid", (
    i32("dc_power", gain=1000),              # 32064 kW
    u16("line_ab_voltage", gain=10),         # 32066 V
    u16("line_bc_voltage", gain=10),
    u16("line_ca_voltage", gain=10),
    u16("phase_a_voltage", gain=10),
    u16("phase_b_voltage", gain=10),
    u16("phase_c_voltage", gain=10),
    i32("phase_a_current", gain=1000),       # 32072 A
    i32("phase_b_current", gain=1000),
    i32("phase_c_current", gain=1000),
    i32("peak_active_power_of_day", gain=1000),  # 32078 kW
    i32("active_power", gain=1000),
    i32("reactive_power", gain=1000),        # kVar
    i16("power_factor", gain=1000),          # 32084
    u16("frequency", gain=100),              # Hz
    u16("efficiency", gain=100),             # %
    i16("internal_temperature", gain=10),    # degC
    u16("insulation_resistance", gain=1000),  # MOhm
    u16("device_status"),                    # 32089
    u16("fault_code"),
    epoch("startup_time"),                   # 32091
    epoch("shutdown_time"),
    i32("active_power_fast", gain=1000),     # 32095
))

CUMULATIVE_1 = RecordLayout("cumulative_1", (
    u32("accumulated_energy_yield", gain=100),  # 32106 kWh
    u32("total_dc_input_energy", gain=100),
    epoch("energy_statistics_time"),            # 32110
    u32("energy_yield_current_hour", gain=100),
    u32("energy_yield_current_day", gain=100),
    u32("energy_yield_current_month", gain=100),
    u32("energy_yield_current_year", gain=100),
))

CUMULATIVE_2 = RecordLayout("cumulative_2", (
    u16("critical_alarms"),                     # 32151
    u16("major_alarms"),
    u16("minor_alarms"),
    u16("warning_alarms"),
    u16("alarm_clearance_serial_number"),
    epoch("statistics_time_previous_hour"),     # 32156
    u32("energy_yield_previous_hour", gain=100),
    epoch("statistics_time_previous_day"),
    u32("energy_yield_previous_day", gain=100),
    epoch("statistics_time_previous_month"),
    u32("energy_yield_previous_month", gain=100),
    epoch("statistics_time_previous_year"),
    u32("energy_yield_previous_year", gain=100),
    u32("latest_active_alarm_serial_number"),   # 32172
    u32("latest_historical_alarm_serial_number"),
    i16("total_bus_voltage", gain=10),          # 32176 V
    i16("maximum_pv_voltage", gain=10),
    i16("minimum_pv_voltage", gain=10),
    i16("average_pv_negative_voltage_to_ground", gain=10),
    i16("maximum_pv_positive_voltage_to_ground", gain=10),
    i16("minimum_pv_negative_voltage_to_ground", gain=10),
    u16("inverter_to_pe_voltage_tolerance"),    # 32182
    bits16("iso_feature_information"),
))

CUMULATIVE_3 = RecordLayout("cumulative_3", (
    u16("builtin_pid_running_status"),         # 32190
    i16("pv_negative_voltage_to_ground", gain=10),
))

MPPT_ENERGY = RecordLayout("mppt_energy", (
    u32("mppt_dc_energy_yield", gain=100, count=10),  # 32212 kWh
))

ALARM_2 = RecordLayout("alarm_2", (
    bits16("monitoring_alarm_1_3", count=3),        # 32252
    bits16("external_power_alarm_1_16", count=16),  # 32255
    bits16("monitoring_alarm_4_5", count=2),        # 32271
    bits16("external_power_alarm_17_18", count=2),  # 32273
))

MPPT_POWER = RecordLayout("mppt_power", (
    u32("mppt_input_power", gain=1000, count=10),  # 32324 kW
))

INTERNAL_TEMPERATURE = RecordLayout("internal_temperature", (
    i16("temperature", gain=10, count=12),  # 35021 degC
))

METER = RecordLayout("meter", (
    u16("meter_status"),                    # 37100
    i32("phase_a_voltage", gain=10),        # V
    i32("phase_b_voltage", gain=10),
    i32("phase_c_voltage", gain=10),
    i32("phase_a_current", gain=100),       # 37107 A
    i32("phase_b_current", gain=100),
    i32("phase_c_current", gain=100),
    i32("active_power", gain=1000),         # 37113 kW, >0 feed-in
    i32("reactive_power"),                  # Var
    i16("power_factor", gain=1000),         # 37117, gain 1000 per the register table, not 100
    i16("frequency", gain=100),             # Hz
    i32("positive_active_energy", gain=100),  # 37119 kWh
    i32("reverse_active_energy", gain=100),
    i32("accumulated_reactive_energy", gain=100),  # kVarh
    u16("meter_type"),                      # 37125, 0 single-phase 1 three-phase
    i32("line_ab_voltage", gain=10),
    i32("line_bc_voltage", gain=10),
    i32("line_ca_voltage", gain=10),
    i32("phase_a_active_power", gain=1000),  # 37132 kW
    i32("phase_b_active_power", gain=1000),
    i32("phase_c_active_power", gain=1000),
    u16("meter_model_detection_result"),    # 37138
))

ESU_1 = RecordLayout("esu_1", (
    u16("running_status"),                  # 37000
    i32("charge_discharge_power", gain=1000),  # kW, >0 charging
    u16("bus_voltage", gain=10),
    u16("soc", gain=10),                    # 37004 %
    reserved(1),
    u16("working_mode"),                    # 37006
    u32("rated_charge_power"),              # W
    u32("rated_discharge_power"),
    reserved(3),
    u16("fault_id"),                        # 37014
    u32("current_day_charge_capacity", gain=100),     # kWh
    u32("current_day_discharge_capacity", gain=100),
    reserved(2),
    i16("bus_current", gain=10),            # 37021 A
    i16("battery_temperature", gain=10),
    reserved(2),
    u16("remaining_charge_discharge_time"),  # 37025 min
    text("dcdc_version", 10),
    text("bms_version", 10),
    u32("maximum_charge_power"),            # 37046 W
    u32("maximum_discharge_power"),
    reserved(2),
    text("sn", 10),                         # 37052
    reserved(4),
    u32("total_charge", gain=100),          # 37066 kWh
    u32("total_discharge", gain=100),
))

ESU_2 = RecordLayout("esu_2", (
    text("sn", 10),                         # 37700
    reserved(28),
    u16("soc", gain=10),                    # 37738 %
    reserved(2),
    u16("running_status"),                  # 37741
    reserved(1),
    i32("charge_discharge_power"),          # 37743 W
    reserved(1),
    u32("current_day_charge_capacity", gain=100),  # 37746 kWh
    u32("current_day_discharge_capacity", gain=100),
    u16("bus_voltage", gain=10),            # 37750
    i16("bus_current", gain=10),
    i16("battery_temperature", gain=10),
    u32("total_charge", gain=100),          # 37753
    u32("total_discharge", gain=100),
))

BATTERY_PACK = RecordLayout("battery_pack", (
    text("sn", 10),                         # 38200
    text("firmware_version", 15),
    reserved(3),
    u16("working_status"),                  # 38228
    u16("soc", gain=10),
    reserved(3),
    i32("charge_discharge_power", gain=1000),  # 38233 kW
    u16("voltage", gain=10),
    i16("current", gain=10),
    reserved(1),
    u32("total_charge", gain=100),          # 38238 kWh
    u32("total_discharge", gain=100),
))

# Ordered ESU1 pack 1-3 then ESU2 pack 1-3
ESU_TEMPERATURES = RecordLayout("esu_temperatures", (
    Group((i16("max_temperature", gain=10), i16("min_temperature", gain=10)), count=6),  # 38452
))

LAYOUTS: dict[str, RecordLayout] = {
    layout.kind: layout
    for layout in (
        IDENTIFICATION, PRODUCT, HARDWARE_1, HARDWARE_2, HARDWARE_3,
        HARDWARE_5, REMOTE_SIGNALLING, ALARM_1, PV, GRID, CUMULATIVE_1,
        CUMULATIVE_2, CUMULATIVE_3, MPPT_ENERGY, ALARM_2, MPPT_POWER,
        INTERNAL_TEMPERATURE, METER, ESU_1, ESU_2, BATTERY_PACK,
        ESU_TEMPERATURES,
    )
}
