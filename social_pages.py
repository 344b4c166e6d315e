"""Open Graph pages for crawlers that do not run the front-end."""

from __future__ import annotations

import html
import json
from urllib.parse import quote

import config as cfg
from project_normalizer import ProjectRecord


def render_page(
    *,
    title: str,
    description: str,
    share_image_url: str | None,
    page_url: str,
    redirect_path: str,
) -> str:
    t = html.escape(title, quote=True)
    d = html.escape(description, quote=True)
    image = html.escape(share_image_url or "", quote=True)
    url = html.escape(page_url, quote=True)
    site = html.escape(cfg.SITE_NAME, quote=True)
    redirect_js = json.dumps(cfg.SITE_URL + redirect_path).replace("</", "<\\/")
    redirect_href = html.escape(redirect_path, quote=True)
    return (
        "<!DOCTYPE html>\n"
        "<html lang=\"en\">\n"
        "  <head>\n"
        "    <meta charset=\"utf-8\" />\n"
        "    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\" />\n"
        f"    <title>{t}</title>\n"
        f"    <meta name=\"description\" content=\"{d}\" />\n"
        f"    <meta property=\"og:title\" content=\"{t}\" />\n"
        f"    <meta property=\"og:description\" content=\"{d}\" />\n"
        "    <meta property=\"og:type\" content=\"website\" />\n"
        f"    <meta property=\"og:url\" content=\"{url}\" />\n"
        f"    <meta property=\"og:site_name\" content=\"{site}\" />\n"
        f"    <meta property=\"og:image\" content=\"{image}\" />\n"
        "    <meta property=\"og:image:type\" content=\"image/jpeg\" />\n"
        "    <meta name=\"twitter:card\" content=\"summary_large_image\" />\n"
        f"    <meta name=\"twitter:title\" content=\"{t}\" />\n"
        f"    <meta name=\"twitter:description\" content=\"{d}\" />\n"
        f"    <meta name=\"twitter:image\" content=\"{image}\" />\n"
        "    <script>\n"
        f"      setTimeout(function () {{ window.location.href = {redirect_js}; }}, 1000);\n"
        "    </script>\n"
        "  </head>\n"
        "  <body>\n"
        "    <div style=\"text-align: center; padding: 2rem; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif\">\n"
        f"      <h1>{t}</h1>\n"
        f"      <p>{d}</p>\n"
        "      <p style=\"color: #666;\">Loading...</p>\n"
        "      <p style=\"color: #999; font-size: 0.9rem;\">\n"
        f"        If you're not redirected, <a href=\"{redirect_href}\">click here</a>\n"
        "      </p>\n"
        "    </div>\n"
        "  </body>\n"
        "</html>\n"
    )


def homepage_page() -> str:
    return render_page(
        title=cfg.SITE_NAME,
        description=cfg.SITE_DESCRIPTION,
        share_image_url=f"{cfg.API_URL}/homepage/share-image",
        page_url=cfg.SITE_URL,
        redirect_path="/",
    )


def about_page() -> str:
    return render_page(
        title=f"{cfg.SITE_NAME} – About",
        description=cfg.SITE_DESCRIPTION,
        share_image_url=f"{cfg.API_URL}/homepage/share-image",
        page_url=f"{cfg.SITE_URL}/about",
        redirect_path="/about",
    )


def space_page() -> str:
    return render_page(
        title=f"{cfg.SITE_NAME} – Space",
        description="Visit our creative space and studio.",
        share_image_url=f"{cfg.API_URL}/space/share-image",
        page_url=f"{cfg.SITE_URL}/space",
        redirect_path="/space",
    )


def project_page(project: ProjectRecord) -> str:
    project_id = project["id"]
    primary = project.get("primaryImage") or {}
    return render_page(
        title=str(project.get("title") or project.get("name") or "Untitled Project"),
        description=str(project.get("description") or cfg.SITE_DESCRIPTION),
        share_image_url=primary.get("url") if isinstance(primary, dict) else None,
        page_url=f"{cfg.SITE_URL}/{quote(project_id, safe='')}",
        redirect_path=f"/project/{quote(project_id, safe='')}",
    )


def tag_page(tag: str) -> str:
    encoded = quote(tag, safe="")
    return render_page(
        title=f"{cfg.SITE_NAME} – Projects with #{tag}",
        description=cfg.SITE_DESCRIPTION,
        share_image_url=f"{cfg.API_URL}/tag/{encoded}/share-image",
        page_url=f"{cfg.SITE_URL}/tag/{encoded}",
        redirect_path=f"/tag/{encoded}",
    )


def person_page(name: str) -> str:
    encoded = quote(name, safe="")
    display = name[:1].upper() + name[1:]
    return render_page(
        title=f"{cfg.SITE_NAME} – Projects with {display}",
        description=cfg.SITE_DESCRIPTION,
        share_image_url=f"{cfg.API_URL}/person/{encoded}/share-image",
        page_url=f"{cfg.SITE_URL}/person/{encoded}",
        redirect_path=f"/person/{encoded}",
    )
