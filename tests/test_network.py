"""Tests for network identity helpers."""

import pytest
from libwiz import NetworkConfig, normalize_mac


class TestNormalizeMac:
    """Tests for MAC address normalization."""

    def test_colon_format(self) -> None:
        """Test normalizing colon-separated MAC."""
        assert normalize_mac("A8:BB:50:E1:D2:C3") == "a8bb50e1d2c3"

    def test_hyphen_format(self) -> None:
        """Test normalizing hyphen-separated MAC."""
        assert normalize_mac("A8-BB-50-E1-D2-C3") == "a8bb50e1d2c3"

    def test_device_format(self) -> None:
        """Test that the format devices send is left unchanged."""
        assert normalize_mac("a8bb50e1d2c3") == "a8bb50e1d2c3"

    def test_invalid_length(self) -> None:
        """Test that invalid length raises ValueError."""
        with pytest.raises(ValueError, match="Invalid MAC address"):
            normalize_mac("A8:BB:50")

    def test_invalid_characters(self) -> None:
        """Test that invalid characters raise ValueError."""
        with pytest.raises(ValueError, match="Invalid MAC address"):
            normalize_mac("GG:HH:II:JJ:KK:LL")

    def test_empty_string(self) -> None:
        """Test that empty string raises ValueError."""
        with pytest.raises(ValueError, match="Invalid MAC address"):
            normalize_mac("")


class TestNetworkConfig:
    """Tests for NetworkConfig."""

    def test_defaults(self) -> None:
        """Test default addresses."""
        network = NetworkConfig()
        assert network.address == "0.0.0.0"
        assert network.broadcast_address == "255.255.255.255"
        assert network.phone_mac is None

    def test_phone_mac_format(self) -> None:
        """Test phoneMac is uppercase without colons."""
        network = NetworkConfig(address="192.168.1.10", mac="aa:bb:cc:dd:ee:0f")
        assert network.phone_mac == "AABBCCDDEE0F"

    def test_invalid_address(self) -> None:
        """Test that a bad address is rejected."""
        with pytest.raises(ValueError, match="Invalid IPv4 address"):
            NetworkConfig(address="not-an-ip")

    def test_invalid_mac(self) -> None:
        """Test that a bad MAC is rejected."""
        with pytest.raises(ValueError):
            NetworkConfig(mac="xyz")
