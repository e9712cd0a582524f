"""The information banner: an HTML template rendered to an image.

The banner shows the page title, URL, creation time, total resource size
and onload time. It is rendered by a browser (so any HTML/CSS works) and
placed at the top of every video frame.

Variables. Context variables from the recording (width, url, html_title,
timestamp_ms, resource_size_bytes, onload_time_ms) are merged with the
user variables in BannerSpec.vars. A variable whose value contains "{{"
is itself a Jinja2 template, rendered once against the variables rendered
before it, so user vars can format context vars:

    vars:
      main_title: "{{ html_title }}"
      on_load_time_value: "{{ onload_time_ms | ms_to_sec }}"

Filters: adjust_width, datetime, mb, ms_to_sec, i18n.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import jinja2
from PIL import Image

from .browser import BrowserSpec, open_page

logger = logging.getLogger(__name__)


# ── Localization ──────────────────────────────────────────────────

LEXICON = {
    "ja-JP": {
        "Resource Size": "リソースサイズ",
        "OnLoad Time": "読み込み時間 (OnLoad)",
    },
}


def current_locale() -> str:
    """Locale from LC_ALL / LC_MESSAGES / LANG, e.g. 'ja_JP.UTF-8' -> 'ja-JP'."""
    raw = (
        os.environ.get("LC_ALL")
        or os.environ.get("LC_MESSAGES")
        or os.environ.get("LANG")
        or "en-US"
    )
    return raw.split(".")[0].replace("_", "-") or "en-US"


def _timezone():
    try:
        return ZoneInfo(os.environ.get("TZ") or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


# ── Jinja2 filters ────────────────────────────────────────────────

def adjust_width(value) -> str:
    # Body width in CSS renders 8px wider than the screenshot width.
    return str(int(float(value)) - 8)


def format_datetime(value) -> str:
    moment = datetime.fromtimestamp(float(value) / 1000, tz=_timezone())
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def format_mb(value) -> str:
    return f"{float(value) / 1024 / 1024:.2f} MB"


def format_ms_to_sec(value) -> str:
    return f"{float(value) / 1000:.2f} sec."


def translate(value) -> str:
    return LEXICON.get(current_locale(), {}).get(value, value)


def _environment(autoescape: bool, undefined=jinja2.Undefined) -> jinja2.Environment:
    env = jinja2.Environment(autoescape=autoescape, undefined=undefined)
    env.filters["adjust_width"] = adjust_width
    env.filters["datetime"] = format_datetime
    env.filters["mb"] = format_mb
    env.filters["ms_to_sec"] = format_ms_to_sec
    env.filters["i18n"] = translate
    return env


# ── Spec ───────────────────────────────────────────────────────────

def _default_vars() -> dict[str, str]:
    return {
        "body_width": "{{ width | adjust_width }}",
        "main_title": "{{ html_title }}",
        "sub_title": "{{ url }}",
        "credit": "loadshow",
        "created_at": "{{ timestamp_ms | datetime }}",
        "resource_size_label": "Resource Size",
        "resource_size_value": "{{ resource_size_bytes | mb }}",
        "on_load_time_label": "OnLoad Time",
        "on_load_time_value": "{{ onload_time_ms | ms_to_sec }}",
    }


@dataclass
class BannerSpec:
    template_file_path: str = ""     # HTML template file (blank: built-in)
    html_template: str = ""          # inline HTML template (blank: built-in)
    vars: dict[str, str | int | float] = field(default_factory=_default_vars)


@dataclass
class BannerContext:
    width: int
    url: str
    html_title: str
    timestamp_ms: int
    resource_size_bytes: int
    onload_time_ms: int | None


@dataclass
class BannerResult:
    input_vars: dict
    rendered_vars: dict[str, str]
    rendered_html: str
    output_file_path: str
    html_file_path: str
    vars_file_path: str
    width: int
    height: int


# ── Rendering ─────────────────────────────────────────────────────

def render_vars(spec: BannerSpec, context: BannerContext) -> tuple[dict, dict[str, str]]:
    """Render each variable once. Returns (input_vars, rendered_vars).

    A variable that fails to render is logged and left out.
    """
    env = _environment(autoescape=False, undefined=jinja2.StrictUndefined)
    input_vars = {**asdict(context), **spec.vars}
    # The load event never fired.
    if input_vars.get("onload_time_ms") is None:
        input_vars["onload_time_ms"] = 0

    rendered = {}
    for key, value in input_vars.items():
        try:
            if isinstance(value, str) and "{{" in value:
                rendered[key] = env.from_string(value).render(rendered)
            else:
                rendered[key] = str(value)
        except (jinja2.TemplateError, TypeError, ValueError) as exc:
            logger.error("Failed to render the variable %s=%s: %s", key, value, exc)
    return input_vars, rendered


def render_html(spec: BannerSpec, rendered_vars: dict[str, str]) -> str:
    """Render the banner HTML from the template file, inline template, or default."""
    if spec.template_file_path:
        source = Path(spec.template_file_path).read_text()
    else:
        source = spec.html_template or DEFAULT_HTML_TEMPLATE
    return _environment(autoescape=True).from_string(source).render(rendered_vars)


async def html_to_image(html: str, output_file_path: str, browser: BrowserSpec) -> None:
    """Screenshot the rendered body of html into a PNG."""
    async with open_page(browser) as page:
        await page.set_content(html, wait_until="load")
        await page.locator("body").screenshot(path=output_file_path)


async def create_banner(
    spec: BannerSpec,
    context: BannerContext,
    output_file_path: str,
    html_file_path: str,
    vars_file_path: str,
    browser: BrowserSpec | None = None,
) -> BannerResult:
    """Render the banner and write its vars JSON, HTML and PNG."""
    logger.debug("create_banner received context %s", context)

    input_vars, rendered_vars = render_vars(spec, context)
    Path(vars_file_path).write_text(json.dumps(rendered_vars, indent=2, ensure_ascii=False))

    rendered_html = render_html(spec, rendered_vars)
    Path(html_file_path).write_text(rendered_html)

    logger.debug("Rendering banner HTML to %s", output_file_path)
    await html_to_image(rendered_html, output_file_path, browser or BrowserSpec())

    with Image.open(output_file_path) as img:
        width, height = img.size

    return BannerResult(
        input_vars=input_vars,
        rendered_vars=rendered_vars,
        rendered_html=rendered_html,
        output_file_path=output_file_path,
        html_file_path=html_file_path,
        vars_file_path=vars_file_path,
        width=width,
        height=height,
    )


DEFAULT_HTML_TEMPLATE = """
<html>
  <head>
    <style>
      body {
        font-family: sans-serif;
        width: {{ body_width }}px;
        height: 95px;
        padding: 4px;
        margin: 0px;
        background-color: #efefef;
        line-height: 1.4;
      }
      .ellipsis {
        max-width: 100%;
        white-space: nowrap;
        overflow: hidden;
        text-overflow: ellipsis;
      }
      .main-title { font-size: 16px; }
      .sub-title { font-size: 12px; color: #00e; }
      .meta {
        display: flex;
        justify-content: space-between;
        align-items: center;
        border-bottom: 1px solid #ccc;
        padding-top: 4px;
        padding-bottom: 4px;
      }
      .datetime { font-size: 13px; }
      .credit { font-size: 15px; }
      .cols {
        padding-top: 4px;
        display: grid;
        grid-template-columns: 1fr 1fr;
        gap: 8px;
      }
      .col {
        display: flex;
        justify-content: space-between;
        align-items: center;
      }
      .label { font-size: 13px; }
      .value { font-size: 15px; }
    </style>
  </head>
  <body>
    <div class="main-title ellipsis">{{ main_title }}</div>
    <div class="sub-title ellipsis">{{ sub_title }}</div>
    <div class="meta">
      <div class="credit">{{ credit }}</div>
      <div class="datetime">{{ created_at }}</div>
    </div>
    <div class="property cols">
      <div class="col">
        <div class="label">{{ resource_size_label | i18n }}</div>
        <div class="value">{{ resource_size_value }}</div>
      </div>
      <div class="col">
        <div class="label">{{ on_load_time_label | i18n }}</div>
        <div class="value">{{ on_load_time_value }}</div>
      </div>
    </div>
  </body>
</html>
"""
