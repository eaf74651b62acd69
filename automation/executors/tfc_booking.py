"""
Playwright booking flow for the venue's amenity reservation site.

One call to :meth:`TfcCourtBooker.attempt_booking` opens a fresh browser,
logs in when needed, picks the requested date and start time, prefers
Court 2 over Court 1, books a 60-minute slot with one guest and verifies
the confirmation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Sequence, Tuple, Union

import pytz
from playwright.async_api import Page, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeout

from automation.shared.booking_contracts import BookingOutcome
from infrastructure import constants
from infrastructure.errors import TransientBookingFailure
from tracking import t


def format_slot_label(target: datetime, timezone: str = constants.VENUE_TIMEZONE) -> str:
    """Render ``target`` the way the schedule table labels rows, e.g. ``7:00 pm``."""

    t('automation.executors.tfc_booking.format_slot_label')
    local = target.astimezone(pytz.timezone(timezone))
    hour = local.hour % 12 or 12
    suffix = 'pm' if local.hour >= 12 else 'am'
    return f"{hour}:{local.minute:02d} {suffix}"


def court_name_for(open_slot_count: int) -> str:
    """The last open button in a row is Court 2 when both courts are open."""

    t('automation.executors.tfc_booking.court_name_for')
    return 'Tennis Court 2' if open_slot_count >= 2 else 'Tennis Court 1'


class TfcCourtBooker:
    """Book a tennis court through the venue website with Playwright."""

    def __init__(
        self,
        username: Optional[str],
        password: Optional[str],
        *,
        headless: bool = True,
        timezone: str = constants.VENUE_TIMEZONE,
        amenities_url: str = constants.AMENITIES_URL,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('automation.executors.tfc_booking.TfcCourtBooker.__init__')
        self.username = username
        self.password = password
        self.headless = headless
        self.timezone = timezone
        self.amenities_url = amenities_url
        self.logger = logger or logging.getLogger('TfcCourtBooker')

    @classmethod
    def from_settings(cls, settings: Any) -> "TfcCourtBooker":
        t('automation.executors.tfc_booking.TfcCourtBooker.from_settings')
        return cls(
            settings.tfc_username,
            settings.tfc_password,
            headless=settings.headless,
            timezone=settings.timezone,
        )

    async def attempt_booking(self, target: datetime) -> BookingOutcome:
        t('automation.executors.tfc_booking.TfcCourtBooker.attempt_booking')
        label = format_slot_label(target, self.timezone)
        self.logger.info("Starting tennis court reservation for %s (%s)", target.isoformat(), label)

        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(
                headless=self.headless,
                args=['--no-sandbox', '--disable-setuid-sandbox', '--disable-dev-shm-usage'],
            )
            try:
                context = await browser.new_context(
                    viewport={'width': 1280, 'height': 900},
                    timezone_id=self.timezone,
                )
                page = await context.new_page()
                page.set_default_timeout(constants.ACTION_TIMEOUT_MS)
                return await self._book(page, target, label)
            except PlaywrightTimeout as exc:
                self.logger.warning("Timed out during booking flow: %s", exc)
                return BookingOutcome.transient_failure(f"Timed out waiting for the booking page: {exc}")
            finally:
                await browser.close()

    async def _book(self, page: Page, target: datetime, label: str) -> BookingOutcome:
        await self._open_amenities(page)

        self.logger.info("Selecting Tennis Court")
        await self._click_visible(page, constants.TENNIS_TILE_SELECTOR)
        self.logger.info("Accepting rules")
        await self._click_visible(page, constants.ACCEPT_RULES_SELECTOR)

        selection = await self._select_slot(page, target, label)
        if isinstance(selection, BookingOutcome):
            return selection
        court, time_label = selection

        await self._configure_reservation(page)

        self.logger.info("Submitting reservation")
        await self._click_visible(page, constants.SUBMIT_RESERVATION_SELECTOR)
        await page.wait_for_timeout(2000)

        if await self._is_confirmed(page):
            self.logger.info("Booked %s at %s", court, time_label)
            return BookingOutcome.success_result(
                court,
                time_label,
                message=f"Successfully booked {court} at {time_label}",
            )
        # Submitted but unverified; retrying could double-book.
        return BookingOutcome.terminal_failure(
            f"Reservation for {court} at {time_label} could not be verified - please check manually"
        )

    async def _open_amenities(self, page: Page) -> None:
        await page.goto(
            self.amenities_url,
            wait_until='networkidle',
            timeout=constants.NAVIGATION_TIMEOUT_MS,
        )
        if 'login' in page.url or await page.locator('input[type="password"]').count() > 0:
            await self._login(page)
            await page.goto(
                self.amenities_url,
                wait_until='networkidle',
                timeout=constants.NAVIGATION_TIMEOUT_MS,
            )

    async def _login(self, page: Page) -> None:
        self.logger.info("Login required, entering credentials")
        if not self.username or not self.password:
            raise TransientBookingFailure("TFC_USERNAME/TFC_PASSWORD not configured")

        username_input = await self._first_present(page, constants.USERNAME_SELECTORS)
        password_input = await self._first_present(page, constants.PASSWORD_SELECTORS)
        if username_input is None or password_input is None:
            raise TransientBookingFailure("Could not find login fields")

        await username_input.fill(self.username)
        await password_input.fill(self.password)
        await page.locator(constants.LOGIN_SUBMIT_SELECTOR).first.click()
        await page.wait_for_load_state('networkidle')
        await page.wait_for_timeout(2000)
        if 'login' in page.url:
            raise TransientBookingFailure("Login failed - still on login page")
        self.logger.info("Login successful")

    async def _select_slot(
        self, page: Page, target: datetime, label: str
    ) -> Union[BookingOutcome, Tuple[str, str]]:
        date_key = target.astimezone(pytz.timezone(self.timezone)).strftime(constants.TARGET_DATE_FORMAT)
        section = page.locator(constants.DATE_SECTION_TEMPLATE.format(date=date_key))
        if await section.count() == 0:
            return BookingOutcome.transient_failure(
                f"Date {date_key} not available - may not be within booking window yet"
            )

        rows = await section.locator(constants.TIME_ROW_SELECTOR).all()
        for row in rows:
            row_label = (await row.locator(constants.TIME_LABEL_SELECTOR).first.text_content() or '').strip()
            if row_label.lower() != label.lower():
                continue

            open_slots = await row.locator(constants.OPEN_SLOT_SELECTOR).all()
            if not open_slots:
                self.logger.warning("No open slots for %s on %s", label, date_key)
                return BookingOutcome.terminal_failure(f"No courts available at {label} - both booked")

            court = court_name_for(len(open_slots))
            self.logger.info("Selecting %s at %s", court, label)
            await open_slots[-1].click()
            await page.wait_for_load_state('networkidle')
            return court, label

        return BookingOutcome.transient_failure(f"Could not find time slot for {label} on {date_key}")

    async def _configure_reservation(self, page: Page) -> None:
        await page.wait_for_url('**/confirm**', timeout=constants.CONFIRM_TIMEOUT_MS)
        await page.wait_for_timeout(1000)

        end_time_buttons = await page.locator(constants.DURATION_BUTTON_SELECTOR).all()
        if len(end_time_buttons) >= 2:
            self.logger.info("Selecting %s-minute reservation", constants.SLOT_DURATION_MINUTES)
            await end_time_buttons[1].click()
        elif end_time_buttons:
            await end_time_buttons[0].click()

        guests = page.locator(constants.GUESTS_SELECTOR)
        if await guests.count() > 0:
            await guests.first.select_option(constants.GUEST_COUNT)
        await page.wait_for_timeout(500)

    async def _is_confirmed(self, page: Page) -> bool:
        content = (await page.content()).lower()
        url = page.url.lower()
        return any(
            keyword in content or keyword in url
            for keyword in constants.CONFIRMATION_KEYWORDS
        )

    @staticmethod
    async def _first_present(page: Page, selectors: Sequence[str]) -> Any:
        for selector in selectors:
            locator = page.locator(selector)
            if await locator.count() > 0:
                return locator.first
        return None

    @staticmethod
    async def _click_visible(page: Page, selector: str) -> None:
        locator = page.locator(selector)
        await locator.wait_for(state='visible', timeout=constants.ACTION_TIMEOUT_MS)
        await locator.click()
        await page.wait_for_load_state('networkidle')
