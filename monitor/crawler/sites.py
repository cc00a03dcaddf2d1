"""Built-in site profiles: keyword tables, structural patterns, cleanup rules."""

from __future__ import annotations

from .config import CrawlConfig, SiteProfile, WidgetRule

BELGIUM_KEYWORDS: tuple[str, ...] = (
    # English
    "e-invoicing",
    "e-invoice",
    "electronic invoice",
    "electronic invoicing",
    "digital invoice",
    "digital invoicing",
    "vat invoice",
    "electronic billing",
    "e-billing",
    "peppol",
    "ubl",
    "xml invoice",
    "structured invoice",
    "invoice automation",
    # French
    "facturation électronique",
    "facture électronique",
    "e-facturation",
    "e-facture",
    "factures électroniques",
    "facture numérique",
    "facturation numérique",
    "facture digitale",
    "facturation digitale",
    "facture xml",
    "facture structurée",
    # Dutch
    "elektronische facturering",
    "elektronische factureren",
    "elektronisch factureren",
    "elektronische factuur",
    "elektronische facturatie",
    "e-facturering",
    "e-factureren",
    "e-factuur",
    "e-facturen",
    "digitale facturering",
    "digitale factuur",
    "gestructureerde factuur",
    "xml factuur",
    # German
    "elektronische rechnung",
    "e-rechnung",
    "digitale rechnung",
    "elektronische rechnungsstellung",
    "xml rechnung",
    "strukturierte rechnung",
    "rechnungsautomatisierung",
)

BELGIUM_PATTERNS: tuple[str, ...] = (
    r"\be[\s-]invoices?\b",
    r"\be[\s-]invoicing\b",
    r"\b(electronic|digital)\s+(invoice|invoicing|billing)s?\b",
    r"\bpeppol\b",
    r"\b(xml|ubl)[\s-]?(invoice|invoicing)s?\b",
    r"\be[\s-]factur(e|es|ation)\b",
    r"\bfactur(e|es|ation)\s+(électronique|numérique|digitale)s?\b",
    r"\be[\s-]factu(ur|ren|ratie|rering|reren)\b",
    r"\belektronische?\s+factu(ur|ren|ratie|rering|reren)\b",
    r"\be[\s-]rechnung(en)?\b",
    r"\belektronische[n]?\s+rechnung(en|sstellung)?\b",
)

BELGIUM_WIDGET_RULES: tuple[WidgetRule, ...] = (
    WidgetRule(
        labels=(
            "related applications",
            "applications connexes",
            "applications liées",
            "gerelateerde toepassingen",
            "gerelateerde applicaties",
            "verwandte anwendungen",
            "zugehörige anwendungen",
        ),
        min_links=2,
    ),
)

# Stored matches that were confirmed as noise and are removed by maintenance cleanup.
BELGIUM_FALSE_POSITIVE_URLS: tuple[str, ...] = (
    "https://bosa.belgium.be/fr/services/accompagnement-des-trajets-de-changement",
    "https://bosa.belgium.be/fr/services/construire-la-cartographie-de-votre-organisation",
    "https://bosa.belgium.be/nl/news/beluister-onze-podcast-over-welzijn-op-het-werk",
    "https://bosa.belgium.be/fr/news/budget-2025-credits-provisoires",
    "https://bosa.belgium.be/nl/news/ministerraad-verfijning-prestaties-persoonlijke-aangelegenheid-3-5de",
    "https://bosa.belgium.be/nl/news/meer-mogelijkheden-om-van-job-te-veranderen-bij-federale-overheid",
    "https://bosa.belgium.be/en/public-procurement-rules-and-procedures",
    "https://bosa.belgium.be/nl/applications/hermes",
    "https://bosa.belgium.be/nl/news/belgie-en-japan-ondertekenen-samenwerkingsovereenkomst-over-digitale-portefeuille",
    "https://bosa.belgium.be/nl/news/ministerraad-verfijning-prestaties-persoonlijke-aangelegenheid-35de",
)

UAE_KEYWORDS: tuple[str, ...] = (
    # English
    "e-invoice",
    "e-invoices",
    "e-invoicing",
    "einvoice",
    "einvoices",
    "einvoicing",
    "electronic invoice",
    "electronic invoices",
    "electronic invoicing",
    "digital invoice",
    "digital invoices",
    "digital invoicing",
    "online invoice",
    "online invoices",
    "online invoicing",
    "tax invoice",
    "tax invoices",
    "vat invoice",
    "vat invoices",
    "electronic billing",
    "digital billing",
    "online billing",
    "e-billing",
    # Arabic
    "فاتورة إلكترونية",
    "الفواتير الإلكترونية",
    "نظام الفوترة الإلكترونية",
    "الفاتورة الرقمية",
    "الفوترة الرقمية",
    "فاتورة ضريبية إلكترونية",
    # Technical
    "peppol",
    "peppol network",
    "peppol authority",
    "peppol access point",
    "ubl",
    "universal business language",
    "xml invoice",
    "xml invoices",
    "xml invoicing",
    "structured invoice",
    "structured invoices",
    "invoice automation",
    "automated invoicing",
    "invoice digitization",
    "invoice digitisation",
    "paperless invoicing",
    "paperless invoice",
    "e-tax invoice",
    "e-tax invoices",
    "zatca",
    "fatoora",
)

UAE_PATTERNS: tuple[str, ...] = (
    r"\be[\s-]invoices?\b",
    r"\be[\s-]invoicing\b",
    r"\be[\s-]billing\b",
    r"\be[\s-]tax\b",
    r"\b(electronic|digital|online)\s+(invoice|invoicing|billing)e?s?\b",
    r"\bpeppol\b",
    r"\b(xml|ubl)[\s-]?(invoice|invoicing)e?s?\b",
    r"\b(structured)[\s-]?(invoice)e?s?\b",
    r"فاتورة\s*إلكترونية",
    r"الفواتير\s*الإلكترونية",
    r"الفوترة\s*الإلكترونية",
    r"نظام\s*الفوترة",
    r"\b(tax|vat)[\s-]?(invoice)e?s?\b",
    r"\b(zatca|fatoora)\b",
)

BELGIUM = SiteProfile(
    key="belgium",
    label="Belgium",
    base_url="https://bosa.belgium.be",
    sitemap_url="https://bosa.belgium.be/sitemap.xml",
    seed_url="https://bosa.belgium.be/en",
    keywords=BELGIUM_KEYWORDS,
    patterns=BELGIUM_PATTERNS,
    widget_rules=BELGIUM_WIDGET_RULES,
)

UAE = SiteProfile(
    key="uae",
    label="UAE",
    base_url="https://mof.gov.ae",
    sitemap_url="https://mof.gov.ae/sitemap_index.xml",
    seed_url="https://mof.gov.ae/en/home/",
    keywords=UAE_KEYWORDS,
    patterns=UAE_PATTERNS,
)

BUILTIN_SITES: dict[str, SiteProfile] = {profile.key: profile for profile in (BELGIUM, UAE)}

KNOWN_FALSE_POSITIVES: dict[str, tuple[str, ...]] = {
    "belgium": BELGIUM_FALSE_POSITIVE_URLS,
}


def available_profiles(config: CrawlConfig | None = None) -> dict[str, SiteProfile]:
    """Return built-in profiles overlaid with profiles declared in config."""

    profiles = dict(BUILTIN_SITES)
    if config is not None:
        for profile in config.custom_sites:
            profiles[profile.key] = profile
    return profiles


def get_site_profile(key: str, config: CrawlConfig | None = None) -> SiteProfile:
    """Look up one profile by key, raising KeyError with the known keys."""

    profiles = available_profiles(config)
    normalized = key.strip().lower()
    if normalized not in profiles:
        raise KeyError(f"Unknown site '{key}'. Known sites: {sorted(profiles)}")
    return profiles[normalized]


def resolve_profiles(config: CrawlConfig, keys: list[str] | None = None) -> list[SiteProfile]:
    """Resolve the profiles to run; defaults to config.sites, then to every profile."""

    selected = keys or config.sites or list(available_profiles(config))
    resolved: dict[str, SiteProfile] = {}
    for key in selected:
        profile = get_site_profile(key, config)
        resolved[profile.key] = profile
    return list(resolved.values())


__all__ = [
    "BELGIUM",
    "BUILTIN_SITES",
    "KNOWN_FALSE_POSITIVES",
    "UAE",
    "available_profiles",
    "get_site_profile",
    "resolve_profiles",
]
