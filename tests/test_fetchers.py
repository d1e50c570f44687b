import unittest
from unittest.mock import MagicMock, patch

import requests
from yfinance.exceptions import YFRateLimitError

from quote_cache.errors import ConfigError, NotFound, RateLimited, Transient
from quote_cache.fetchers import AlphaVantageFetcher, FinnhubFetcher, ScraperFetcher, YahooFetcher
from quote_cache.routing import SourceRouter
from quote_cache.scrapers import SCRAPER_REGISTRY, PageScraper, get_scraper, parse_price, register_scraper


def _resp(status=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = {}
    resp.text = text
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp


class TestFinnhubFetcher(unittest.TestCase):
    @patch("quote_cache.fetchers.requests.get")
    def test_maps_quote_fields(self, mock_get):
        mock_get.return_value = _resp(payload={"c": 190.5, "d": 1.5, "dp": 0.79, "h": 191, "l": 188, "o": 189, "pc": 189.0, "t": 1700000000})
        quote = FinnhubFetcher(api_key="k").fetch(" aapl ")
        self.assertEqual(quote.price, 190.5)
        self.assertEqual(quote.change, 1.5)
        self.assertEqual(quote.percent_change, 0.79)
        self.assertEqual(quote.high_price, 191.0)
        self.assertEqual(quote.previous_close, 189.0)
        self.assertEqual(quote.api_metadata, {"source": "finnhub", "timestamp": 1700000000})
        _, kwargs = mock_get.call_args
        self.assertEqual(kwargs["params"]["symbol"], "AAPL")

    @patch("quote_cache.fetchers.requests.get")
    def test_all_zero_quote_is_not_found(self, mock_get):
        mock_get.return_value = _resp(payload={"c": 0, "d": None, "dp": None, "h": 0, "l": 0, "o": 0, "pc": 0})
        with self.assertRaises(NotFound):
            FinnhubFetcher(api_key="k").fetch("ZZZZ")

    @patch("quote_cache.fetchers.requests.get")
    def test_http_status_classification(self, mock_get):
        fetcher = FinnhubFetcher(api_key="k")
        for status, exc in ((429, RateLimited), (401, ConfigError), (403, ConfigError), (404, NotFound), (502, Transient)):
            mock_get.return_value = _resp(status=status, payload={})
            with self.assertRaises(exc):
                fetcher.fetch("AAPL")

    @patch("quote_cache.fetchers.requests.get", side_effect=requests.ConnectionError("down"))
    def test_network_error_is_transient(self, _get):
        with self.assertRaises(Transient):
            FinnhubFetcher(api_key="k").fetch("AAPL")

    @patch("quote_cache.fetchers.requests.get")
    def test_non_json_is_transient(self, mock_get):
        mock_get.return_value = _resp(payload=ValueError("no json"))
        with self.assertRaises(Transient):
            FinnhubFetcher(api_key="k").fetch("AAPL")

    @patch("quote_cache.fetchers.get_provider_settings")
    @patch("quote_cache.fetchers.requests.get")
    def test_missing_key_is_config_error(self, mock_get, mock_settings):
        mock_settings.return_value = MagicMock(finnhub_api_key=None, http_timeout_seconds=5)
        with self.assertRaises(ConfigError):
            FinnhubFetcher().fetch("AAPL")
        mock_get.assert_not_called()


class TestAlphaVantageFetcher(unittest.TestCase):
    QUOTE = {
        "Global Quote": {
            "01. symbol": "FXAIX",
            "02. open": "200.1000",
            "03. high": "201.0000",
            "04. low": "199.5000",
            "05. price": "200.5000",
            "06. volume": "0",
            "07. latest trading day": "2025-01-02",
            "08. previous close": "199.0000",
            "09. change": "1.5000",
            "10. change percent": "0.7538%",
        }
    }

    @patch("quote_cache.fetchers.requests.get")
    def test_parses_global_quote(self, mock_get):
        mock_get.return_value = _resp(payload=self.QUOTE)
        quote = AlphaVantageFetcher(api_key="k").fetch("fxaix")
        self.assertEqual(quote.price, 200.5)
        self.assertEqual(quote.change, 1.5)
        self.assertAlmostEqual(quote.percent_change, 0.7538)
        self.assertEqual(quote.open_price, 200.1)
        self.assertEqual(quote.api_metadata["source"], "alpha-vantage")
        self.assertEqual(quote.api_metadata["latest_trading_day"], "2025-01-02")
        self.assertEqual(quote.api_metadata["symbol"], "FXAIX")
        _, kwargs = mock_get.call_args
        self.assertEqual(kwargs["params"]["function"], "GLOBAL_QUOTE")

    @patch("quote_cache.fetchers.requests.get")
    def test_note_is_rate_limited(self, mock_get):
        mock_get.return_value = _resp(payload={"Note": "Thank you for using Alpha Vantage! Our standard API call frequency is 5 calls per minute"})
        with self.assertRaises(RateLimited):
            AlphaVantageFetcher(api_key="k").fetch("FXAIX")

    @patch("quote_cache.fetchers.requests.get")
    def test_information_rate_limit_notice(self, mock_get):
        mock_get.return_value = _resp(payload={"Information": "We have detected your API key and our standard API rate limit is 25 requests per day."})
        with self.assertRaises(RateLimited):
            AlphaVantageFetcher(api_key="k").fetch("FXAIX")

    @patch("quote_cache.fetchers.requests.get")
    def test_error_message_and_empty_quote_are_not_found(self, mock_get):
        fetcher = AlphaVantageFetcher(api_key="k")
        mock_get.return_value = _resp(payload={"Error Message": "Invalid API call."})
        with self.assertRaises(NotFound):
            fetcher.fetch("BOGUS")
        mock_get.return_value = _resp(payload={"Global Quote": {"05. price": "0.0000"}})
        with self.assertRaises(NotFound):
            fetcher.fetch("BOGUS")

    @patch("quote_cache.fetchers.requests.get")
    def test_unexpected_shape_is_transient(self, mock_get):
        mock_get.return_value = _resp(payload={"something": "else"})
        with self.assertRaises(Transient):
            AlphaVantageFetcher(api_key="k").fetch("FXAIX")


class TestYahooFetcher(unittest.TestCase):
    @patch("quote_cache.fetchers.yf.Ticker")
    def test_fast_info_mapping(self, mock_ticker):
        info = MagicMock(last_price=110.0, previous_close=100.0, open=101.0, day_high=111.0, day_low=99.0, last_volume=5000, currency="USD")
        mock_ticker.return_value.fast_info = info
        quote = YahooFetcher().fetch("msft")
        mock_ticker.assert_called_once_with("MSFT")
        self.assertEqual(quote.price, 110.0)
        self.assertAlmostEqual(quote.change, 10.0)
        self.assertAlmostEqual(quote.percent_change, 10.0)
        self.assertEqual(quote.api_metadata["source"], "yahoo")

    @patch("quote_cache.fetchers.yf.Ticker", side_effect=YFRateLimitError())
    def test_rate_limit_error(self, _ticker):
        with self.assertRaises(RateLimited):
            YahooFetcher().fetch("MSFT")

    @patch("quote_cache.fetchers.yf.Ticker")
    def test_missing_price_is_not_found(self, mock_ticker):
        mock_ticker.return_value.fast_info = MagicMock(last_price=None, previous_close=None)
        with self.assertRaises(NotFound):
            YahooFetcher().fetch("NOPE")

    @patch("quote_cache.fetchers.yf.Ticker", side_effect=KeyError("currentTradingPeriod"))
    def test_other_errors_are_transient(self, _ticker):
        with self.assertRaises(Transient):
            YahooFetcher().fetch("MSFT")


PAGE = """
<html><body>
<div class="mfl-daily-info-snapshot">
  <span class="value-column font-xxl label"> $1,234.56 </span>
</div>
</body></html>
"""


class TestScrapers(unittest.TestCase):
    def test_parse_price(self):
        self.assertEqual(parse_price("$1,234.56"), 1234.56)
        self.assertEqual(parse_price(" 27.10 USD "), 27.10)
        self.assertIsNone(parse_price("n/a"))
        self.assertIsNone(parse_price(None))

    def test_registry(self):
        self.assertEqual(get_scraper("Fidelity").name, "fidelity")
        self.assertIsNone(get_scraper("nope"))

    @patch("quote_cache.scrapers.requests.get")
    def test_fidelity_extracts_price(self, mock_get):
        mock_get.return_value = _resp(text=PAGE)
        fetcher = ScraperFetcher(get_scraper("fidelity"))
        quote = fetcher.fetch("nhfsmkx98")
        self.assertEqual(quote.price, 1234.56)
        self.assertEqual(quote.source, "fidelity")
        self.assertIn("/NHFSMKX98?", quote.api_metadata["url"])
        args, kwargs = mock_get.call_args
        self.assertIn("User-Agent", kwargs["headers"])

    @patch("quote_cache.scrapers.requests.get")
    def test_configured_url_overrides_template(self, mock_get):
        mock_get.return_value = _resp(text=PAGE)
        quote = ScraperFetcher(get_scraper("fidelity")).fetch("ABC", {"url": "https://example.test/abc"})
        self.assertEqual(mock_get.call_args[0][0], "https://example.test/abc")
        self.assertEqual(quote.api_metadata["url"], "https://example.test/abc")

    @patch("quote_cache.scrapers.requests.get")
    def test_missing_element_is_not_found(self, mock_get):
        mock_get.return_value = _resp(text="<html><body>maintenance</body></html>")
        scraper = PageScraper("test", "https://example.test/{symbol}", ".price", timeout=1)
        with self.assertRaises(NotFound):
            scraper.scrape("ABC")

    @patch("quote_cache.scrapers.requests.get")
    def test_rate_limited_page(self, mock_get):
        mock_get.return_value = _resp(status=429)
        with self.assertRaises(RateLimited):
            get_scraper("fidelity").scrape("ABC")

    @patch("quote_cache.scrapers.requests.get")
    def test_registered_scraper_routes_through_router(self, mock_get):
        register_scraper(" Acme ", lambda: PageScraper("acme", "https://acme.test/{symbol}", "span.nav"))
        self.addCleanup(SCRAPER_REGISTRY.pop, "acme", None)
        mock_get.return_value = _resp(text='<html><span class="nav">$12.50</span></html>')
        router = SourceRouter({"ACME1": {"provider": "acme"}}, fetchers={})
        quote, route = router.fetch("acme1")
        self.assertEqual(quote.price, 12.5)
        self.assertEqual(route.provider, "acme")
        self.assertEqual(mock_get.call_args[0][0], "https://acme.test/ACME1")


if __name__ == "__main__":
    unittest.main()
