"""
Selenium-driven Session for recreation.gov.

Site-specific automation lives here and nowhere else. Every step carries a
bounded WebDriverWait so a hung page cannot stall a job.

Flow:
1. open: launch Chrome
2. sign_in: /log-in, fill email + password, submit, confirm we left the login page
3. select_target: detailed-availability page for the division's first entry date
4. set_group_size: guest counter popup
5. claim: select each night's cell, press Book Now / Add to Cart, then wait
   for an explicit cart confirmation
"""

import logging
from datetime import date
from typing import Callable, Optional, Sequence

from selenium import webdriver
from selenium.common.exceptions import (
    ElementClickInterceptedException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.common.by import By
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait

from .config import RECGOV_BASE_URL, SESSION_TIMEOUT_SECONDS
from .entities import Credentials, DateRange
from .errors import SessionError
from .session import Session


logger = logging.getLogger(__name__)

DriverFactory = Callable[[], webdriver.Remote]

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

# Selectors
EMAIL_SELECTORS = (
    'input[name="email"]',
    'input[type="email"]',
    "#email",
)
PASSWORD_SELECTORS = (
    'input[name="password"]',
    'input[type="password"]',
    "#password",
)
SUBMIT_SELECTORS = (
    'button[type="submit"]',
)
GROUP_SIZE_SELECTORS = (
    "#guest-counter-number-field-People",
    'input[name*="group" i]',
    'input[aria-label*="group" i]',
    "#number-input",
)
BOOK_BUTTON_XPATHS = (
    "//button[.//text()[contains(., 'Book Now')]]",
    "//button[.//text()[contains(., 'Add to Cart')]]",
    "//button[.//text()[contains(., 'Reserve')]]",
)
CONFIRMATION_URL_MARKERS = ("/cart", "checkout")
CONFIRMATION_TEXT = "added to cart"

# Short wait used when probing alternative selectors
PROBE_TIMEOUT_SECONDS = 3.0


def build_chrome_driver(headless: bool = True) -> webdriver.Chrome:
    """Launch a Chrome WebDriver configured for unattended runs."""
    chrome_options = webdriver.ChromeOptions()
    if headless:
        chrome_options.add_argument("--headless=new")
    chrome_options.add_argument("--no-sandbox")
    chrome_options.add_argument("--disable-dev-shm-usage")
    chrome_options.add_argument("--window-size=1920,1080")
    chrome_options.add_argument(f"--user-agent={USER_AGENT}")
    chrome_options.add_argument("--disable-blink-features=AutomationControlled")
    chrome_options.add_experimental_option("excludeSwitches", ["enable-automation"])
    return webdriver.Chrome(options=chrome_options)


class RecGovSession(Session):
    """One browser session bound to one permit."""

    def __init__(
        self,
        permit_id: str,
        driver_factory: Optional[DriverFactory] = None,
        base_url: str = RECGOV_BASE_URL,
        timeout: float = SESSION_TIMEOUT_SECONDS,
        headless: bool = True,
    ):
        """
        Args:
            permit_id: Permit whose availability page is driven
            driver_factory: Builds the WebDriver (defaults to Chrome)
            base_url: Site root
            timeout: Upper bound for any single wait
            headless: Passed to the default Chrome factory
        """
        self.permit_id = permit_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._driver_factory = driver_factory or (lambda: build_chrome_driver(headless))
        self._driver = None
        self._division_id: Optional[str] = None

    @property
    def driver(self):
        if self._driver is None:
            raise SessionError("Session is not open")
        return self._driver

    def availability_url(self, start_date: date) -> str:
        return (
            f"{self.base_url}/permits/{self.permit_id}/registration/detailed-availability"
            f"?date={start_date.isoformat()}&type=overnight"
        )

    # =========================================================================
    # Session steps
    # =========================================================================

    def open(self) -> None:
        try:
            self._driver = self._driver_factory()
            self._driver.set_page_load_timeout(self.timeout)
        except WebDriverException as e:
            raise SessionError(f"Could not launch browser: {e.msg or e}") from e
        logger.info(f"[RecGov] Browser launched for permit {self.permit_id}")

    def sign_in(self, credentials: Credentials) -> None:
        driver = self.driver
        try:
            driver.get(f"{self.base_url}/log-in")

            email_input = self._find_first(EMAIL_SELECTORS)
            if email_input is None:
                raise SessionError("Login form not found")
            email_input.clear()
            email_input.send_keys(credentials.email)

            password_input = self._find_first(PASSWORD_SELECTORS)
            if password_input is None:
                raise SessionError("Password field not found")
            password_input.clear()
            password_input.send_keys(credentials.password)

            submit = self._find_first(SUBMIT_SELECTORS, clickable=True)
            if submit is None:
                raise SessionError("Login button not found")
            submit.click()

            WebDriverWait(driver, self.timeout).until(
                lambda d: "log-in" not in (d.current_url or "")
            )
        except TimeoutException as e:
            raise SessionError("Login failed. Check your recreation.gov credentials.") from e
        except WebDriverException as e:
            raise SessionError(f"Sign-in error: {e.msg or e}") from e

        logger.info("[RecGov] Signed in")

    def select_target(self, division_id: str, start_date: date) -> None:
        self._division_id = division_id
        try:
            self.driver.get(self.availability_url(start_date))
            self._wait_for_app()
        except TimeoutException as e:
            raise SessionError("Availability page did not load") from e
        except WebDriverException as e:
            raise SessionError(f"Navigation error: {e.msg or e}") from e

    def set_group_size(self, group_size: int) -> None:
        driver = self.driver
        try:
            trigger = self._find_first(("#guest-counter",), clickable=True)
            if trigger is not None and trigger.get_attribute("aria-expanded") == "false":
                trigger.click()

            field = self._find_first(GROUP_SIZE_SELECTORS)
            if field is None:
                raise SessionError("Group size field not found")
            field.clear()
            field.send_keys(str(group_size))
            # React only listens to input/change events
            driver.execute_script(
                "arguments[0].dispatchEvent(new Event('input', {bubbles:true}));"
                "arguments[0].dispatchEvent(new Event('change', {bubbles:true}));",
                field,
            )

            close_btn = self._find_first(
                ("#guest-counter-popup button[aria-label='Close']",), clickable=True
            )
            if close_btn is not None:
                close_btn.click()
        except WebDriverException as e:
            raise SessionError(f"Could not set group size: {e.msg or e}") from e

        logger.info(f"[RecGov] Group size set to {group_size}")

    def claim(self, date_range: DateRange) -> bool:
        """
        Select every night of the range and submit it to the cart.

        Returns True only once the site shows the cart (or checkout) page or an
        "added to cart" notice. A missing cell, a missing button, or no
        confirmation within the timeout is False.
        """
        driver = self.driver
        try:
            driver.get(self.availability_url(date_range.start_date))
            self._wait_for_app()

            if not self._select_nights(date_range.nights()):
                logger.info(f"[RecGov] Not every night selectable for {date_range.describe()}")
                return False

            book_button = self._find_first(BOOK_BUTTON_XPATHS, by=By.XPATH, clickable=True)
            if book_button is None:
                logger.info("[RecGov] No booking button found")
                return False
            self._click(book_button)

            WebDriverWait(driver, self.timeout).until(self._cart_confirmed)
        except TimeoutException:
            logger.info(f"[RecGov] No cart confirmation for {date_range.describe()}")
            return False
        except WebDriverException as e:
            logger.warning(f"[RecGov] Claim error: {e.msg or e}")
            return False

        logger.info(f"[RecGov] {date_range.describe()} confirmed in cart")
        return True

    def close(self) -> None:
        driver, self._driver = self._driver, None
        if driver is not None:
            driver.quit()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _wait_for_app(self) -> None:
        WebDriverWait(self.driver, self.timeout).until(
            EC.presence_of_element_located((By.ID, "recApp"))
        )

    def _find_first(
        self,
        selectors: Sequence[str],
        by: str = By.CSS_SELECTOR,
        clickable: bool = False,
    ):
        """Return the first element matched by any selector, or None."""
        condition = EC.element_to_be_clickable if clickable else EC.presence_of_element_located
        for selector in selectors:
            try:
                return WebDriverWait(self.driver, PROBE_TIMEOUT_SECONDS).until(
                    condition((by, selector))
                )
            except TimeoutException:
                continue
        return None

    def _select_nights(self, nights: list[date]) -> bool:
        for night in nights:
            selector = (
                f'[data-division-id="{self._division_id}"][data-date="{night.isoformat()}"] button'
            )
            cell = self._find_first((selector,), clickable=True)
            if cell is None:
                return False
            label = cell.get_attribute("aria-label") or ""
            if "unavailable" in label.lower():
                return False
            self._click(cell)
        return True

    def _click(self, element) -> None:
        try:
            element.click()
        except ElementClickInterceptedException:
            self.driver.execute_script("arguments[0].click();", element)

    @staticmethod
    def _cart_confirmed(driver) -> bool:
        url = (driver.current_url or "").lower()
        if any(marker in url for marker in CONFIRMATION_URL_MARKERS):
            return True
        return CONFIRMATION_TEXT in (driver.page_source or "").lower()
