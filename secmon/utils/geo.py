import ipaddress
import logging

import requests

from secmon.schemas import GeoLocation

logger = logging.getLogger(__name__)

LOCAL_GEO = GeoLocation(
    country="Local",
    country_name="Local",
    city="Localhost",
    region="N/A",
    isp="N/A",
    lat=0.0,
    lon=0.0,
)


class GeoLocator:
    def __init__(self, url_template="http://ip-api.com/json/{ip}", timeout=2.0, enabled=True):
        self.url_template = url_template
        self.timeout = timeout
        self.enabled = enabled

    def lookup(self, ip):
        """
        Resolve an IP to a GeoLocation.
        Returns None on any failure; a slow backend counts as a failure after `timeout` seconds.
        """
        if not ip:
            return None

        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return None

        if address.is_loopback or address.is_private:
            return LOCAL_GEO

        if not self.enabled:
            return None

        try:
            response = requests.get(self.url_template.format(ip=ip), timeout=self.timeout)
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Geo lookup failed for {ip}: {e}")
            return None

        if data.get("status") != "success":
            logger.debug("Geo lookup for %s returned %s", ip, data.get("message"))
            return None

        return GeoLocation(
            country=data.get("countryCode"),
            country_name=data.get("country"),
            city=data.get("city"),
            region=data.get("regionName"),
            isp=data.get("isp"),
            lat=data.get("lat"),
            lon=data.get("lon"),
        )
