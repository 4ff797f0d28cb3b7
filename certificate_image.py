import io
from datetime import datetime
from typing import Optional

from PIL import Image, ImageDraw, ImageFont

FONT_DIR = "/usr/share/fonts/truetype/dejavu"

PRIMARY = (30, 64, 175)
SECONDARY = (51, 65, 85)
ACCENT = (217, 119, 6)


def _font(name: str, size: int):
    try:
        return ImageFont.truetype(f"{FONT_DIR}/{name}", size)
    except OSError:
        return ImageFont.load_default()


def render_certificate(student_name: str, course_title: str, completed_at: Optional[datetime],
                       certificate_id: str, verification_url: str) -> bytes:
    """Render a landscape PNG certificate and return its bytes."""
    width, height = 1920, 1080
    img = Image.new("RGB", (width, height), color="white")
    draw = ImageDraw.Draw(img)

    draw.rectangle([50, 50, width - 50, height - 50], outline=PRIMARY, width=10)
    draw.rectangle([70, 70, width - 70, height - 70], outline=ACCENT, width=3)

    title_font = _font("DejaVuSerif-Bold.ttf", 80)
    subtitle_font = _font("DejaVuSerif.ttf", 40)
    text_font = _font("DejaVuSans.ttf", 36)
    small_font = _font("DejaVuSans.ttf", 26)

    def centered(text, font, y, fill):
        bbox = draw.textbbox((0, 0), text, font=font)
        draw.text(((width - (bbox[2] - bbox[0])) / 2, y), text, fill=fill, font=font)

    issued = completed_at or datetime.utcnow()
    centered("CERTIFICATE OF COMPLETION", title_font, 130, PRIMARY)
    centered("This is to certify that", subtitle_font, 270, SECONDARY)
    centered(student_name, title_font, 350, ACCENT)
    centered("has successfully completed the course", text_font, 490, SECONDARY)
    centered(course_title, title_font, 560, PRIMARY)
    centered(f"Completed on {issued:%B} {issued.day}, {issued.year}", text_font, 700, SECONDARY)
    centered(f"Certificate ID: {certificate_id}", small_font, 820, SECONDARY)
    centered(f"Verify at {verification_url}", small_font, 860, SECONDARY)
    draw.line([(width // 2 - 200, 950), (width // 2 + 200, 950)], fill=SECONDARY, width=2)
    centered("LearnHQ", small_font, 960, SECONDARY)

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
