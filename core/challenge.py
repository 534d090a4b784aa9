"""
Bot-challenge detection and solution injection.

Works on any driver exposing the browser driver methods (find_one, find_many,
get_attribute, execute_script, fill, click, fetch_bytes, url).
"""

import base64
import logging
from typing import Any, Optional
from urllib.parse import parse_qs, urljoin, urlparse

from .models import CaptchaKind, Challenge

logger = logging.getLogger(__name__)

CAPTCHA_FORM_SELECTOR = "xpath=//form[contains(@action, 'captcha')]"
CAPTCHA_TEXT_SELECTOR = (
    "xpath=//body//*[not(self::script) and not(self::style)]"
    "[contains(text(), 'captcha') or contains(text(), 'CAPTCHA')]"
)
RECAPTCHA_FRAME_SELECTOR = "xpath=//iframe[contains(@src, 'recaptcha')]"
SITE_KEY_SELECTOR = "xpath=//*[@data-sitekey]"
CAPTCHA_IMAGE_SELECTOR = "xpath=//img[contains(@src, 'captcha')]"
CAPTCHA_INPUT_SELECTOR = "xpath=//input[@name='captcha']"
SUBMIT_SELECTOR = "xpath=//button[@type='submit'] | //input[@type='submit']"

# Google serves its "unusual traffic" interstitial under /sorry/
INTERSTITIAL_PATH = "/sorry/"

PRESENCE_SELECTORS = [
    CAPTCHA_FORM_SELECTOR,
    RECAPTCHA_FRAME_SELECTOR,
    CAPTCHA_TEXT_SELECTOR,
]

SET_RECAPTCHA_TOKEN_SCRIPT = """token => {
    document.querySelectorAll('#g-recaptcha-response, textarea[name="g-recaptcha-response"]')
        .forEach(el => { el.innerHTML = token; el.value = token; });
}"""

SUBMIT_FORM_SCRIPT = """() => {
    const form = document.querySelector('form');
    if (form) { form.submit(); }
}"""


def parse_site_key(frame_src: Optional[str]) -> Optional[str]:
    """Extract the `k` query parameter from a reCAPTCHA iframe URL."""
    if not frame_src:
        return None
    values = parse_qs(urlparse(frame_src).query).get("k")
    return values[0] if values else None


class ChallengeDetector:
    """Detects, reads and answers challenges on the current page."""

    async def is_present(self, driver: Any) -> bool:
        """True if any challenge indicator is on the page."""
        if INTERSTITIAL_PATH in (driver.url or ""):
            return True
        for selector in PRESENCE_SELECTORS:
            try:
                if await driver.find_many(selector):
                    return True
            except Exception as e:
                logger.debug(f"[Challenge] Indicator check failed for {selector}: {e}")
        return False

    async def detect(self, driver: Any) -> Optional[Challenge]:
        """
        Read the challenge payload.

        Returns None if no supported challenge shape is on the page.
        """
        frames = await driver.find_many(RECAPTCHA_FRAME_SELECTOR)
        if frames:
            site_key = parse_site_key(await driver.get_attribute(frames[0], "src"))
            if not site_key:
                holder = await driver.find_one(SITE_KEY_SELECTOR)
                if holder is not None:
                    site_key = await driver.get_attribute(holder, "data-sitekey")
            if site_key:
                logger.info(f"[Challenge] Found reCAPTCHA with site key: {site_key}")
                return Challenge(kind=CaptchaKind.INTERACTIVE, site_key=site_key, page_url=driver.url)

        image = await driver.find_one(CAPTCHA_IMAGE_SELECTOR)
        if image is not None:
            src = await driver.get_attribute(image, "src")
            if src:
                data = await driver.fetch_bytes(urljoin(driver.url, src))
                logger.info(f"[Challenge] Found image CAPTCHA ({len(data)} bytes)")
                return Challenge(
                    kind=CaptchaKind.IMAGE,
                    image_base64=base64.b64encode(data).decode("ascii"),
                    page_url=driver.url
                )

        logger.warning("[Challenge] Unrecognized CAPTCHA format")
        return None

    async def inject_solution(self, driver: Any, challenge: Challenge, solution: str):
        """Write the solution into the page and submit it."""
        if challenge.kind == CaptchaKind.INTERACTIVE:
            await driver.execute_script(SET_RECAPTCHA_TOKEN_SCRIPT, solution)
        else:
            field = await driver.find_one(CAPTCHA_INPUT_SELECTOR)
            if field is None:
                raise LookupError("CAPTCHA input field not found")
            await driver.fill(field, solution)

        submit = await driver.find_one(SUBMIT_SELECTOR)
        if submit is not None:
            await driver.click(submit)
        else:
            await driver.execute_script(SUBMIT_FORM_SCRIPT)
