"""Page landmarks used to recognise where the browser currently is.

LinkedIn changes its markup often, so every selector, URL fragment and
keyword the session relies on lives here as plain data. ``SiteLandmarks``
can be loaded from a JSON file (``LANDMARKS_FILE``) to swap any list
without touching code; omitted keys keep the defaults below.
"""

from pathlib import Path

from pydantic import BaseModel


class ChallengeLandmarks(BaseModel):
    url_patterns: list[str] = [
        "checkpoint/challenge",
        "checkpoint/challenge/recaptcha",
        "checkpoint/challenge/email-confirmation",
        "checkpoint/challenge/edd",
        "security-verification",
    ]
    selectors: list[str] = [
        'input[name="pin"]',
        'iframe[title*="challenge"]',
        'iframe[title*="verification"]',
        'iframe[title*="recaptcha"]',
        'iframe[src*="recaptcha"]',
        'iframe[src*="captcha"]',
        "#captcha-challenge",
        ".challenge-dialog",
        ".captcha-container",
        ".checkpoint-challenge",
        ".challenge-containment",
        ".challenge-v2",
        "#captcha-internal",
        '[data-test-id="verification-code-input"]',
        '[data-test-id="security-challenge"]',
        'input[name="verification-code"]',
        'input[name="security-code"]',
        'input[name="email-pin"]',
        'input[name="phone-pin"]',
        'button[data-test-id="verify-button"]',
        'button[data-test-id="captcha-submit"]',
        'button[aria-label*="verify"]',
        ".g-recaptcha",
        ".recaptcha-checkbox",
        ".recaptcha-verify-button",
        ".security-verification",
        ".security-challenge",
        ".verification-form",
        ".challenge-content",
    ]
    frame_patterns: list[str] = ["recaptcha", "captcha", "challenge"]
    keywords: list[str] = [
        "verification challenge",
        "security check",
        "let's do a quick security check",
        "prove you're not a robot",
        "confirm your identity",
        "unusual login attempt",
        "verify it's you",
        "verification code",
        "security verification",
        "human verification",
        "automated access",
        "suspicious activity",
        "bot detection",
        "unusual activity",
        "identity check",
        "two-step verification",
        "enter the code",
        "verify your account",
        "verify your identity",
        "we need to verify",
        "not a robot",
        "robot check",
        "we detected unusual activity",
        "check your inbox for a verification link",
        "help us keep your account secure",
        "confirm it's you",
        "security verification step",
    ]
    # Signals that an operator has cleared the challenge
    success_url_patterns: list[str] = [
        "linkedin.com/feed",
        "linkedin.com/in/",
        "linkedin.com/mynetwork",
    ]
    success_keywords: list[str] = ["success", "verified", "welcome back"]
    # Signals that a submission is in flight
    submitting_selectors: list[str] = ["button[disabled]", "form.submitting"]
    submitting_keywords: list[str] = ["verifying", "processing"]


class LoginLandmarks(BaseModel):
    login_url: str = "https://www.linkedin.com/login"
    login_path_patterns: list[str] = ["/login", "/uas/login", "/checkpoint/lg"]
    domain_marker: str = "linkedin.com"
    username_selector: str = 'input[name="session_key"]'
    password_selector: str = 'input[name="session_password"]'
    submit_selector: str = 'button[type="submit"]'
    nav_selectors: list[str] = [
        'div[data-test-id="nav-bar"]',
        'div[data-test-id="global-nav"]',
        ".global-nav",
        ".global-nav__nav",
        ".global-nav__primary-items",
        ".msg-overlay-bubble-header",
        ".notification-badge",
        ".search-global-typeahead",
        ".global-nav__search",
        ".global-nav__me",
        ".feed-identity-module",
        '[data-test-id="nav-settings"]',
    ]
    content_selectors: list[str] = [
        ".share-box-feed-entry__wrapper",
        ".feed-shared-update-v2",
        ".share-box",
        ".feed-creation-state",
        ".feed-shared-card",
        '[data-test-id="feed-content"]',
    ]
    identity_selectors: list[str] = [
        ".profile-rail-card",
        ".feed-identity-module__actor-meta",
        ".identity-panel",
        'a[href="/feed/"]',
        'a[href="/in/"]',
        'a[href="/jobs/"]',
        'a[href="/messaging/"]',
        '[data-control-name="share.post"]',
        '[data-test-id="post-share-button"]',
    ]
    title_patterns: list[str] = ["Feed", "My Network", "Jobs", "Messaging"]
    logout_selectors: list[str] = [
        'a[href="/login"]',
        ".sign-in-form",
        '[data-test-id="sign-in-button"]',
        "#session_key",
        "#session_password",
    ]


class ProfileLandmarks(BaseModel):
    domain_marker: str = "linkedin.com/"
    referer: str = "https://www.google.com/"
    selectors: list[str] = [
        ".pv-top-card",
        ".profile-background-image",
        ".pv-text-details__left-panel",
        ".pv-top-card--list",
        ".pv-top-card-section__name",
        ".text-heading-xlarge",
        "h1.text-heading-xlarge",
        ".pv-text-details__left-panel h1",
        ".ph5.pb5",
        ".artdeco-card.pv-top-card",
        ".scaffold-layout__main",
        'section[data-section="summary"]',
        "#experience",
        "#education",
        "#skills",
        "main.scaffold-layout__main",
        "h1",
    ]
    keywords: list[str] = [
        "experience",
        "education",
        "skills",
        "about",
        "contact info",
        "summary",
        "recommendations",
        "accomplishments",
        "certifications",
    ]
    url_patterns: list[str] = ["/in/"]
    error_selectors: list[str] = [
        ".error-container",
        ".profile-unavailable",
        ".profile-not-found",
        '[data-test-id="error-container"]',
        "#error-page",
        ".error-404",
        ".not-found",
    ]
    error_url_patterns: list[str] = ["/404", "/in/unavailable"]
    expand_selectors: list[str] = [
        'button[aria-label*="Show all skills"]',
        'button[aria-label*="show all skills"]',
        'button[aria-label*="Show all experiences"]',
        'button[aria-label*="Show all education"]',
        "button.inline-show-more-text__button",
        "button.pv-profile-section__see-more-inline",
    ]
    expand_text_patterns: list[str] = [
        "see more",
        "show more",
        "show all",
        "view all",
        "view more",
        "expand",
        "show additional skills",
    ]


class SiteLandmarks(BaseModel):
    challenge: ChallengeLandmarks = ChallengeLandmarks()
    login: LoginLandmarks = LoginLandmarks()
    profile: ProfileLandmarks = ProfileLandmarks()

    @classmethod
    def load(cls, path: str = "") -> "SiteLandmarks":
        """Defaults, overridden by the JSON file at *path* when given."""
        if not path:
            return cls()
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))
