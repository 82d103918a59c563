"""HTTP venue driver."""

from limitbuy.driver.http.driver import HttpDriver

__all__ = ["HttpDriver"]
