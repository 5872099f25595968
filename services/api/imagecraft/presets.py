# services/api/imagecraft/presets.py

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Preset:
    width: int
    height: int
    name: str
    description: str


SOCIAL_PRESETS = {
    "facebook-cover": Preset(1200, 630, "Facebook Cover", "1200 × 630 pixels"),
    "facebook-profile": Preset(400, 400, "Facebook Profile", "400 × 400 pixels"),
    "instagram-post": Preset(1080, 1080, "Instagram Post", "1080 × 1080 pixels"),
    "instagram-story": Preset(1080, 1920, "Instagram Story", "1080 × 1920 pixels"),
    "linkedin-cover": Preset(1584, 396, "LinkedIn Cover", "1584 × 396 pixels"),
    "linkedin-profile": Preset(400, 400, "LinkedIn Profile", "400 × 400 pixels"),
    "twitter-header": Preset(1500, 500, "Twitter Header", "1500 × 500 pixels"),
    "youtube-thumbnail": Preset(1280, 720, "YouTube Thumbnail", "1280 × 720 pixels"),
}

# Official document photo sizes, pixels at 300 DPI
PASSPORT_PRESETS = {
    "passport-india": Preset(413, 531, "Indian Passport", "35×45mm (413×531px)"),
    "passport-us": Preset(600, 600, "US Passport", "2×2 inch (600×600px)"),
    "visa-us": Preset(600, 600, "US Visa", "2×2 inch (600×600px)"),
    "aadhar": Preset(413, 531, "Aadhar Card", "35×45mm (413×531px)"),
    "pan-card": Preset(413, 531, "PAN Card", "35×45mm (413×531px)"),
    "driving-license": Preset(413, 531, "Driving License", "35×45mm (413×531px)"),
    "school-id": Preset(295, 413, "School ID", "25×35mm (295×413px)"),
    "resume-photo": Preset(295, 413, "Resume Photo", "25×35mm (295×413px)"),
}

DEFAULT_PASSPORT_PRESET = "passport-india"
