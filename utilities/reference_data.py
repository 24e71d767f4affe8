"""
Static reference data for verification risk assessment.
Country and industry risk tiers, document upload limits, fraud signatures.
"""

# FATF Black List (High-Risk Jurisdictions Subject to a Call for Action)
FATF_BLACK_LIST = [
    "Iran", "Myanmar", "North Korea",
]

# FATF Grey List (Jurisdictions Under Increased Monitoring), as of 2024-2025
FATF_GREY_LIST = [
    "Algeria", "Angola", "Bulgaria", "Burkina Faso", "Cameroon",
    "Côte d'Ivoire", "Croatia", "Democratic Republic of the Congo",
    "Haiti", "Kenya", "Lebanon", "Mali", "Monaco", "Mozambique",
    "Namibia", "Nigeria", "Philippines", "Senegal", "South Africa",
    "South Sudan", "Syria", "Tanzania", "Venezuela", "Vietnam", "Yemen",
]

# Comprehensive sanctions programs or conflict zones, scored with the black list
HIGH_RISK_COUNTRIES = FATF_BLACK_LIST + [
    "Syria", "Afghanistan", "Somalia", "Yemen", "Libya",
    "Iraq", "Venezuela", "Belarus",
]

MEDIUM_RISK_COUNTRIES = FATF_GREY_LIST + [
    "Russia", "China", "Pakistan", "Zimbabwe", "Nicaragua",
    "Eritrea", "Central African Republic",
]

COUNTRY_RISK_HIGH = 0.9
COUNTRY_RISK_MEDIUM = 0.6
COUNTRY_RISK_LOW = 0.2
COUNTRY_RISK_UNKNOWN = 0.3

# Industry keywords for AML/CFT industry risk
HIGH_RISK_INDUSTRIES = [
    "cryptocurrency", "gambling", "adult_entertainment", "pawn_shops",
    "money_services", "precious_metals", "cannabis", "arms_dealing",
]

MEDIUM_RISK_INDUSTRIES = [
    "real_estate", "art_dealers", "jewelry", "automotive_dealers",
    "construction", "import_export",
]

INDUSTRY_RISK_HIGH = 0.8
INDUSTRY_RISK_MEDIUM = 0.5
INDUSTRY_RISK_LOW = 0.2
INDUSTRY_RISK_UNKNOWN = 0.3


def calculate_country_risk(country: str | None) -> float:
    """Country/jurisdiction risk in [0,1] from the reference lists."""
    if not country:
        return COUNTRY_RISK_UNKNOWN
    lowered = country.lower()
    if any(c.lower() in lowered for c in HIGH_RISK_COUNTRIES):
        return COUNTRY_RISK_HIGH
    if any(c.lower() in lowered for c in MEDIUM_RISK_COUNTRIES):
        return COUNTRY_RISK_MEDIUM
    return COUNTRY_RISK_LOW


def calculate_industry_risk(industry: str | None) -> float:
    """Industry risk in [0,1]: keyword match against the high/medium lists."""
    if not industry:
        return INDUSTRY_RISK_UNKNOWN
    lowered = industry.lower().replace(" ", "_").replace("-", "_")
    if any(k in lowered for k in HIGH_RISK_INDUSTRIES):
        return INDUSTRY_RISK_HIGH
    if any(k in lowered for k in MEDIUM_RISK_INDUSTRIES):
        return INDUSTRY_RISK_MEDIUM
    return INDUSTRY_RISK_LOW


# Document upload constraints
ALLOWED_MIME_TYPES = ["image/jpeg", "image/jpg", "image/png", "application/pdf"]
ALLOWED_EXTENSIONS = ["jpg", "jpeg", "png", "pdf"]
IMAGE_MIME_TYPES = ["image/jpeg", "image/jpg", "image/png"]

# Metadata signatures left by image editors
EDITING_TOOL_SIGNATURES = ["photoshop", "gimp", "paint"]

# Valid width/height ratios per document class
VALID_ASPECT_RATIOS = {
    "portrait_id": (0.7, 0.8),
    "landscape": (1.3, 1.6),
    "card": (0.6, 0.7),
}
