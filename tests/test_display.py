"""
Tests for the display blocks, themes and formatter.
"""

from __future__ import annotations

import random

import pytest

from usbtree.descriptors.constants import Speed
from usbtree.descriptors.records import (
    Configuration,
    DeviceDescriptor,
    Endpoint,
    Interface,
    StringRef,
)
from usbtree.display.blocks import (
    BlockContext,
    BlockKind,
    ConfigurationBlock,
    DeviceBlock,
    EndpointBlock,
    InterfaceBlock,
    TREE_DEVICE_BLOCKS,
    default_blocks,
    get_spec,
    parse_blocks,
)
from usbtree.display.formatter import (
    PLACEHOLDER,
    Group,
    MaskSerial,
    OutputMode,
    PrintSettings,
    Sort,
    mask_serials,
    render,
)
from usbtree.display.theme import Colour, ColourRole, IconTheme, customize_theme, get_theme
from usbtree.enumeration.adapter import EnumerationAdapter
from usbtree.tree.builder import TreeBuilder
from usbtree.tree.models import Bus, Device, UsbTree


def make_device(
    bus: int,
    port_path: tuple[int, ...],
    address: int | None,
    vid: int | None = None,
    pid: int = 0x0001,
    name: str | None = None,
    serial: str | None = None,
    device_class: int = 0,
    children: list[Device] | None = None,
) -> Device:
    descriptor = None
    if vid is not None:
        descriptor = DeviceDescriptor(
            usb_version=0x0200, device_class=device_class, device_subclass=0,
            device_protocol=0, max_packet_size=64, vendor_id=vid, product_id=pid,
            device_version=0x0100, manufacturer_index=0, product_index=1,
            serial_index=2, num_configurations=1,
        )
    return Device(
        bus=bus,
        port_path=port_path,
        address=address,
        descriptor=descriptor,
        product=StringRef(index=1, value=name),
        serial=StringRef(index=2, value=serial),
        degraded=descriptor is None,
        children=children or [],
    )


def plain(**kwargs) -> PrintSettings:
    return PrintSettings(theme=get_theme("plain"), **kwargs)


@pytest.fixture
def small_tree() -> UsbTree:
    """Root hub 1 with device 2 on port 1."""
    child = make_device(1, (1,), 2, 0x046D, 0xC31C, name="Keyboard", serial="KB01")
    root = make_device(1, (), 1, 0x1D6B, 0x0002, name="Root", device_class=0x09,
                       children=[child])
    return UsbTree(buses=[Bus(number=1, name="EHCI", root=root)])


@pytest.fixture
def hub_tree(hub_tree_backend) -> UsbTree:
    """Built tree of the hub_tree_backend with strings resolved."""
    with EnumerationAdapter(hub_tree_backend) as adapter:
        tree = TreeBuilder(adapter).build()
        tree.to_dict()
    return tree


class TestBlocks:
    """Tests for block parsing and extraction."""

    def test_parse_blocks(self) -> None:
        """Test comma lists and underscore names."""
        assert parse_blocks(BlockKind.DEVICE, "name,serial") == [
            DeviceBlock.NAME, DeviceBlock.SERIAL
        ]
        assert parse_blocks(BlockKind.DEVICE, ["vendor_id", "product-id,"]) == [
            DeviceBlock.VENDOR_ID, DeviceBlock.PRODUCT_ID
        ]
        assert parse_blocks(BlockKind.ENDPOINT, ["Direction"]) == [EndpointBlock.DIRECTION]

    def test_parse_unknown_block(self) -> None:
        """Test unknown names list the valid ones."""
        with pytest.raises(ValueError, match="Unknown device block: bogus") as exc:
            parse_blocks(BlockKind.DEVICE, ["name", "bogus"])
        assert "vendor-id" in str(exc.value)

    def test_parse_block_of_other_kind(self) -> None:
        """Test catalogs are per kind."""
        with pytest.raises(ValueError, match="Unknown endpoint block"):
            parse_blocks(BlockKind.ENDPOINT, "serial")

    def test_default_blocks(self) -> None:
        """Test terse, verbose and tree defaults."""
        assert default_blocks(BlockKind.DEVICE, tree=True) == TREE_DEVICE_BLOCKS
        assert DeviceBlock.SPEED in default_blocks(BlockKind.DEVICE)
        assert DeviceBlock.STATUS in default_blocks(BlockKind.DEVICE, verbose=True)
        assert default_blocks(BlockKind.DEVICE, verbose=True, tree=True) == default_blocks(
            BlockKind.DEVICE, verbose=True
        )

    def test_default_blocks_are_copies(self) -> None:
        """Test callers may mutate the returned list."""
        blocks = default_blocks(BlockKind.BUS)
        blocks.clear()
        assert default_blocks(BlockKind.BUS) != []

    def test_device_values(self, small_tree: UsbTree) -> None:
        """Test device block formatting."""
        keyboard = small_tree.find_device(1, 2)
        ctx = BlockContext()

        def value(block: DeviceBlock) -> str | None:
            return get_spec(BlockKind.DEVICE, block).extract(keyboard, ctx)

        assert value(DeviceBlock.DEVICE_NUMBER) == "002"
        assert value(DeviceBlock.BUS_NUMBER) == "001"
        assert value(DeviceBlock.VENDOR_ID) == "0x046d"
        assert value(DeviceBlock.PORT_PATH) == "1-1"
        assert value(DeviceBlock.TREE_POSITIONS) == "1"
        assert value(DeviceBlock.BCD_USB) == "2.00"
        assert value(DeviceBlock.STATUS) == "ok"
        assert value(DeviceBlock.SPEED) is None
        assert value(DeviceBlock.BUS_POWER) is None

    def test_decimal_ids(self, small_tree: UsbTree) -> None:
        """Test decimal output of IDs."""
        keyboard = small_tree.find_device(1, 2)
        spec = get_spec(BlockKind.DEVICE, DeviceBlock.PRODUCT_ID)
        assert spec.extract(keyboard, BlockContext(decimal=True)) == str(0xC31C)

    def test_degraded_status(self) -> None:
        """Test a degraded device's status and missing values."""
        device = make_device(1, (3,), 4)
        ctx = BlockContext()

        assert get_spec(BlockKind.DEVICE, DeviceBlock.STATUS).extract(device, ctx) == "degraded"
        assert get_spec(BlockKind.DEVICE, DeviceBlock.VENDOR_ID).extract(device, ctx) is None
        assert get_spec(BlockKind.DEVICE, DeviceBlock.CLASS_CODE).extract(device, ctx) is None

    def test_configuration_values(self) -> None:
        """Test configuration attribute and power formatting."""
        config = Configuration(
            value=1, attributes=0x80, max_power=250, total_length=9, num_interfaces=0
        )
        device = make_device(1, (1,), 2, 0x1234)
        device.speed = Speed.SUPER
        ctx = BlockContext(device=device, configuration=config)

        attributes = get_spec(BlockKind.CONFIGURATION, ConfigurationBlock.ATTRIBUTES)
        power = get_spec(BlockKind.CONFIGURATION, ConfigurationBlock.MAX_POWER)
        assert attributes.extract(config, ctx) == "bus-powered"
        assert power.extract(config, ctx) == "2000mA"

    def test_interface_values(self) -> None:
        """Test interface port path and class formatting."""
        config = Configuration(
            value=1, attributes=0x80, max_power=50, total_length=9, num_interfaces=1
        )
        intf = Interface(
            number=2, alt_setting=0, num_endpoints=0, interface_class=0x03,
            interface_subclass=0x01, interface_protocol=0x02,
        )
        device = make_device(1, (4, 2), 7, 0x1234)
        ctx = BlockContext(device=device, configuration=config)

        assert get_spec(BlockKind.INTERFACE, InterfaceBlock.PORT_PATH).extract(
            intf, ctx) == "1-4.2:1.2"
        assert get_spec(BlockKind.INTERFACE, InterfaceBlock.CLASS_CODE).extract(
            intf, ctx) == "HID"
        assert get_spec(BlockKind.INTERFACE, InterfaceBlock.PROTOCOL).extract(
            intf, ctx) == "0x02"

    def test_endpoint_values(self) -> None:
        """Test endpoint type names and packet sizes."""
        endpoint = Endpoint(address=0x81, attributes=0x05, max_packet_size=0x1400, interval=1)
        ctx = BlockContext()

        def value(block: EndpointBlock) -> str | None:
            return get_spec(BlockKind.ENDPOINT, block).extract(endpoint, ctx)

        assert value(EndpointBlock.NUMBER) == "1"
        assert value(EndpointBlock.DIRECTION) == "IN"
        assert value(EndpointBlock.TRANSFER_TYPE) == "Isochronous"
        assert value(EndpointBlock.SYNC_TYPE) == "Async"
        assert value(EndpointBlock.MAX_PACKET_SIZE) == "3x 1024"


class TestThemes:
    """Tests for themes and icons."""

    def test_unknown_theme(self) -> None:
        """Test unknown theme names."""
        with pytest.raises(ValueError, match="Unknown theme: neon"):
            get_theme("neon")

    def test_paint(self) -> None:
        """Test colours wrap text and plain leaves it alone."""
        assert get_theme("plain").paint("x", ColourRole.NAME) == "x"
        painted = get_theme("default").paint("x", ColourRole.NAME)
        assert painted.startswith("\033[") and painted.endswith("\033[0m")
        assert get_theme("default").paint("", ColourRole.NAME) == ""

    def test_device_icons(self) -> None:
        """Test icons by device class or single interface class."""
        icons = IconTheme()
        assert icons.for_classes(0x09, {0x09}) == icons.classes[0x09]
        assert icons.for_classes(0x00, {0x03}) == icons.classes[0x03]
        assert icons.for_classes(0x00, {0x03, 0x08}) == icons.default
        assert icons.for_classes(None, set()) == icons.default
        assert icons.for_attributes(True, True) == f"{icons.self_powered} {icons.remote_wakeup}"

    def test_customize_icons(self) -> None:
        """Test icon overrides by class name, code and slot name."""
        base = get_theme("default")
        theme = customize_theme(base, icons={"hid": "K", 8: "D", "0x09": "H", "bus": "B"})

        assert theme.icons.for_class(0x03) == "K"
        assert theme.icons.for_class(0x08) == "D"
        assert theme.icons.for_class(0x09) == "H"
        assert theme.icons.bus == "B"
        assert theme.icons.for_class(0x01) == base.icons.for_class(0x01)
        assert base.icons.for_class(0x03) != "K"

    def test_customize_icons_on_icon_free_theme(self) -> None:
        """Test icon overrides give a theme without icons the default set."""
        theme = customize_theme(get_theme("plain"), icons={"hid": "K"})

        assert theme.icons.for_class(0x03) == "K"
        assert theme.icons.for_class(0x08) == IconTheme().for_class(0x08)
        assert theme.colours is None

    def test_customize_colours(self) -> None:
        """Test colour overrides by role, including switching one off."""
        theme = customize_theme(
            get_theme("default"), colours={"serial": "red+bold", "vid": "none"}
        )

        painted = theme.paint("x", ColourRole.SERIAL)
        assert painted == f"{Colour.RED}{Colour.BOLD}x{Colour.RESET}"
        assert theme.paint("x", ColourRole.VID) == "x"
        assert theme.colours[ColourRole.NAME] == Colour.BLUE

    def test_customize_unchanged(self) -> None:
        """Test no overrides return the theme itself."""
        theme = get_theme("ascii")
        assert customize_theme(theme) is theme
        assert customize_theme(theme, {}, {}) is theme

    def test_customize_invalid(self) -> None:
        """Test unknown keys and colours."""
        theme = get_theme("default")
        with pytest.raises(ValueError, match="Unknown USB class"):
            customize_theme(theme, icons={"toaster": "T"})
        with pytest.raises(ValueError, match="Unknown colour role"):
            customize_theme(theme, colours={"vendor": "red"})
        with pytest.raises(ValueError, match="Unknown colour: teal"):
            customize_theme(theme, colours={"vid": "teal"})


class TestSort:
    """Tests for device ordering."""

    def test_device_number(self, hub_tree: UsbTree) -> None:
        """Test ordering by device number."""
        ordered = Sort.DEVICE_NUMBER.sort(hub_tree.iter_devices())
        assert [d.address for d in ordered] == [1, 2, 4, 5, 6]

    def test_vendor_product(self, hub_tree: UsbTree) -> None:
        """Test ordering by vendor then product ID."""
        ordered = Sort.VENDOR_PRODUCT.sort(hub_tree.iter_devices())
        assert [d.address for d in ordered] == [6, 2, 4, 5, 1]

    def test_name(self, hub_tree: UsbTree) -> None:
        """Test case-insensitive name ordering."""
        ordered = Sort.NAME.sort(hub_tree.iter_devices())
        assert [d.name for d in ordered] == ["Gadget", "Keyboard", "Root", "Ultra", "USB2 Hub"]

    def test_unknown_values_last(self) -> None:
        """Test devices without the key sort after the rest."""
        devices = [make_device(1, (2,), None), make_device(1, (1,), 9, 0x1234)]
        assert [d.address for d in Sort.DEVICE_NUMBER.sort(devices)] == [9, None]
        assert [d.address for d in Sort.VENDOR_PRODUCT.sort(devices)] == [9, None]

    def test_ties_break_on_position(self) -> None:
        """Test equal keys fall back to bus and port path."""
        devices = [
            make_device(2, (1,), 3, 0x1234, name="Same"),
            make_device(1, (2,), 3, 0x1234, name="Same"),
            make_device(1, (1,), 3, 0x1234, name="Same"),
        ]
        for sort in (Sort.NAME, Sort.DEVICE_NUMBER, Sort.VENDOR_PRODUCT, Sort.PORT_PATH):
            ordered = sort.sort(devices)
            assert [(d.bus, d.port_path) for d in ordered] == [(1, (1,)), (1, (2,)), (2, (1,))]

    def test_no_sort_keeps_order(self, hub_tree: UsbTree) -> None:
        """Test NO_SORT keeps traversal order."""
        devices = list(hub_tree.iter_devices())
        assert Sort.NO_SORT.sort(devices) == devices


class TestListMode:
    """Tests for list output."""

    def test_rows(self, small_tree: UsbTree) -> None:
        """Test one row per device in port path order."""
        settings = plain(device_blocks=parse_blocks(BlockKind.DEVICE, "bus-number,device-number"))
        assert render(small_tree, settings) == "001 001\n001 002"

    def test_placeholder(self, small_tree: UsbTree) -> None:
        """Test unknown values render as the placeholder."""
        small_tree.buses[0].root.children.append(make_device(1, (2,), 3))
        settings = plain(
            device_blocks=parse_blocks(BlockKind.DEVICE, "device-number,vendor-id,name")
        )
        rows = render(small_tree, settings).splitlines()

        assert rows[2].split() == ["003", PLACEHOLDER, PLACEHOLDER]

    def test_padding(self, small_tree: UsbTree) -> None:
        """Test columns are padded to the widest value."""
        settings = plain(device_blocks=parse_blocks(BlockKind.DEVICE, "name,device-number"))
        assert render(small_tree, settings).splitlines() == [
            "Root     001",
            "Keyboard 002",
        ]

    def test_no_padding(self, small_tree: UsbTree) -> None:
        """Test unpadded output."""
        settings = plain(
            device_blocks=parse_blocks(BlockKind.DEVICE, "name,device-number"),
            no_padding=True,
        )
        assert render(small_tree, settings).splitlines() == ["Root 001", "Keyboard 002"]

    def test_headings(self, small_tree: UsbTree) -> None:
        """Test the heading row."""
        settings = plain(
            device_blocks=parse_blocks(BlockKind.DEVICE, "device-number,name"),
            headings=True,
        )
        lines = render(small_tree, settings).splitlines()

        assert lines[0] == " #  Name"
        assert lines[1] == "001 Root"

    def test_colour_codes(self, small_tree: UsbTree) -> None:
        """Test only coloured themes emit escape codes."""
        assert "\033[" in render(small_tree, PrintSettings())
        assert "\033[" not in render(small_tree, plain())

    def test_icons_dropped_without_icon_theme(self) -> None:
        """Test icon blocks vanish when the theme has no icons."""
        settings = plain()
        assert DeviceBlock.ICON not in settings.blocks_for(BlockKind.DEVICE)
        assert DeviceBlock.ICON in PrintSettings().blocks_for(BlockKind.DEVICE)

    def test_verbose_blocks(self) -> None:
        """Test -vvvv or --more switch to the verbose sets."""
        assert DeviceBlock.STATUS in plain(verbosity=4).blocks_for(BlockKind.DEVICE)
        assert DeviceBlock.STATUS in plain(more=True).blocks_for(BlockKind.DEVICE)
        assert DeviceBlock.STATUS not in plain(verbosity=3).blocks_for(BlockKind.DEVICE)

    def test_hide_hubs(self, hub_tree: UsbTree) -> None:
        """Test hubs are left out of the list."""
        settings = plain(
            device_blocks=parse_blocks(BlockKind.DEVICE, "device-number"), hide_hubs=True
        )
        assert render(hub_tree, settings).splitlines() == ["005", "006", "004"]

    def test_match_limits_rows(self, hub_tree: UsbTree) -> None:
        """Test a match predicate limits list rows, even with masked serials."""
        settings = plain(
            device_blocks=parse_blocks(BlockKind.DEVICE, "device-number"),
            mask_serials=MaskSerial.HIDE,
        )
        lines = render(hub_tree, settings, lambda d: d.serial.get() == "KB01").splitlines()

        assert lines == ["006"]

    def test_group_by_bus(self, small_tree: UsbTree) -> None:
        """Test bus groups with a bus line each."""
        small_tree.buses.append(Bus(number=2, name="OHCI", root=make_device(2, (), 1, 0x1D6B)))
        settings = plain(
            device_blocks=parse_blocks(BlockKind.DEVICE, "bus-number,device-number"),
            bus_blocks=parse_blocks(BlockKind.BUS, "bus-number,name"),
            group=Group.BUS,
        )
        assert render(small_tree, settings).splitlines() == [
            "001 EHCI",
            "001 001",
            "001 002",
            "",
            "002 OHCI",
            "002 001",
        ]

    def test_device_sequence(self, hub_tree: UsbTree) -> None:
        """Test rendering a flat device list."""
        devices = [hub_tree.find_device(1, 6), hub_tree.find_device(1, 4)]
        settings = plain(device_blocks=parse_blocks(BlockKind.DEVICE, "device-number"))

        assert render(devices, settings) == "006\n004"
        assert render(devices, plain(mode=OutputMode.TREE, device_blocks=settings.device_blocks)) \
            == "006\n004"


class TestTreeMode:
    """Tests for tree output."""

    def test_indentation(self, small_tree: UsbTree) -> None:
        """Test a child is drawn one level below its root hub."""
        settings = plain(
            mode=OutputMode.TREE,
            device_blocks=parse_blocks(BlockKind.DEVICE, "device-number"),
            bus_blocks=parse_blocks(BlockKind.BUS, "bus-number"),
        )
        assert render(small_tree, settings).splitlines() == [
            "/: 001",
            "`-- o 001",
            "    `-- o 002",
        ]

    def test_connectors(self, hub_tree: UsbTree) -> None:
        """Test edge and corner connectors with continuation lines."""
        settings = plain(
            mode=OutputMode.TREE,
            device_blocks=parse_blocks(BlockKind.DEVICE, "device-number"),
            bus_blocks=parse_blocks(BlockKind.BUS, "bus-number"),
        )
        assert render(hub_tree, settings).splitlines() == [
            "/: 001",
            "`-- o 001",
            "    |-- o 002",
            "    |   |-- o 005",
            "    |   `-- o 006",
            "    `-- o 004",
        ]

    def test_utf8_glyphs(self, small_tree: UsbTree) -> None:
        """Test the default theme draws box characters."""
        text = render(small_tree, PrintSettings(mode=OutputMode.TREE))
        assert "└── " in text
        assert "●" in text

    @pytest.mark.parametrize("verbosity,lines", [(0, 6), (1, 11), (2, 16), (3, 22)])
    def test_verbosity_levels(self, hub_tree: UsbTree, verbosity: int, lines: int) -> None:
        """Test configurations, interfaces and endpoints appear level by level."""
        settings = plain(mode=OutputMode.TREE, verbosity=verbosity)
        assert len(render(hub_tree, settings).splitlines()) == lines

    def test_endpoint_glyphs(self, hub_tree: UsbTree) -> None:
        """Test IN and OUT endpoints get their own glyphs."""
        text = render(hub_tree, plain(mode=OutputMode.TREE, verbosity=3))
        assert "`-- < 2 OUT" in text
        assert "> 1 IN" in text

    def test_hide_hubs(self, hub_tree: UsbTree) -> None:
        """Test hub children are lifted into the hub's place."""
        settings = plain(
            mode=OutputMode.TREE,
            device_blocks=parse_blocks(BlockKind.DEVICE, "device-number"),
            bus_blocks=parse_blocks(BlockKind.BUS, "bus-number"),
            hide_hubs=True,
        )
        assert render(hub_tree, settings).splitlines() == [
            "/: 001",
            "|-- o 005",
            "|-- o 006",
            "`-- o 004",
        ]

    def test_hide_buses(self, small_tree: UsbTree) -> None:
        """Test buses without devices are skipped."""
        small_tree.buses.append(Bus(number=2, root=make_device(2, (), 1, 0x1D6B)))
        small_tree.buses.append(Bus(number=3))
        settings = plain(
            mode=OutputMode.TREE,
            bus_blocks=parse_blocks(BlockKind.BUS, "bus-number"),
            hide_buses=True,
        )
        text = render(small_tree, settings)

        assert "/: 001" in text
        assert "/: 002" not in text
        assert "/: 003" not in text

    def test_buses_separated(self, small_tree: UsbTree) -> None:
        """Test a blank line between buses."""
        small_tree.buses.append(Bus(number=2, root=make_device(2, (), 1, 0x1D6B)))
        settings = plain(
            mode=OutputMode.TREE,
            device_blocks=parse_blocks(BlockKind.DEVICE, "device-number"),
            bus_blocks=parse_blocks(BlockKind.BUS, "bus-number"),
        )
        assert render(small_tree, settings).splitlines()[3:] == ["", "/: 002", "`-- o 001"]


class TestJsonAndMasking:
    """Tests for JSON output and serial masking."""

    def test_json_tree(self, small_tree: UsbTree) -> None:
        """Test json mode returns the tree document."""
        data = render(small_tree, PrintSettings(mode=OutputMode.JSON))

        assert isinstance(data, dict)
        root = data["buses"][0]["devices"][0]
        assert root["devices"][0]["serial"] == "KB01"

    def test_json_device_list(self, small_tree: UsbTree) -> None:
        """Test json mode on a flat list."""
        data = render([small_tree.find_device(1, 2)], PrintSettings(mode=OutputMode.JSON))
        assert [d["address"] for d in data["devices"]] == [2]
        assert "version" in data

    def test_hide(self, small_tree: UsbTree) -> None:
        """Test hidden serials keep their length."""
        masked = mask_serials(small_tree, MaskSerial.HIDE)

        assert masked.find_device(1, 2).serial.get() == "****"
        assert small_tree.find_device(1, 2).serial.get() == "KB01"

    def test_scramble(self, small_tree: UsbTree) -> None:
        """Test scrambled serials reuse the serial's characters."""
        masked = mask_serials(small_tree, MaskSerial.SCRAMBLE, random.Random(1))
        serial = masked.find_device(1, 2).serial.get()

        assert len(serial) == 4
        assert set(serial) <= set("KB01")

    def test_replace(self, small_tree: UsbTree) -> None:
        """Test replaced serials use uppercase letters and digits."""
        masked = mask_serials(small_tree, MaskSerial.REPLACE, random.Random(1))
        serial = masked.find_device(1, 2).serial.get()

        assert len(serial) == 4
        assert serial.isalnum() and serial.upper() == serial

    def test_missing_serial_stays_missing(self, small_tree: UsbTree) -> None:
        """Test devices without a serial are untouched."""
        masked = mask_serials(small_tree, MaskSerial.HIDE)
        assert masked.find_device(1, 1).serial.get() is None

    def test_render_masks(self, small_tree: UsbTree) -> None:
        """Test render applies the mask setting."""
        data = render(small_tree, PrintSettings(mode=OutputMode.JSON, mask_serials=MaskSerial.HIDE))
        assert data["buses"][0]["devices"][0]["devices"][0]["serial"] == "****"
