"""
Detection rule collections for pdfsentry.

Three independent, ordered collections:

- XSS markers (script tags, dangerous DOM/browser APIs, PDF.js viewer access)
- PDF JavaScript / viewer-API markers (Acrobat ``app.*``, /JavaScript,
  /OpenAction, /Launch, FontMatrix injection)
- Form and action hijacking markers (/SubmitForm, /ImportData, HTML form
  actions)

Order within a collection only fixes the order findings are reported in.
New rules are appended. Patterns are compiled once at import time; matching
goes through ``finditer`` which keeps its own cursor, so the compiled objects
are safe to share between threads and scans.
"""

from __future__ import annotations

import re

from .models import Category, Detector, Rule, Severity


# (pattern, name, description, severity)
_RuleSpec = tuple[str, str, str, Severity]


# ---------------------------------------------------------------------------
# XSS patterns
# ---------------------------------------------------------------------------

_XSS_SPECS: list[_RuleSpec] = [
    (
        r"<script[\s\S]*?>[\s\S]*?</script>",
        "Script Tag",
        "Found <script> tags that may execute JavaScript",
        Severity.HIGH,
    ),
    (
        r"javascript\s*:",
        "JavaScript Protocol",
        "Found javascript: protocol that may execute code",
        Severity.HIGH,
    ),
    (
        r"""on(load|click|mouseover|mouse\w+|key\w+)\s*=\s*["']?[^"']*["']?""",
        "Event Handler",
        "Found event handlers that may execute JavaScript",
        Severity.MEDIUM,
    ),
    (
        r"<iframe[\s\S]*?>[\s\S]*?</iframe>",
        "iFrame Element",
        "Found <iframe> elements that may load malicious content",
        Severity.HIGH,
    ),
    (
        r"document\.write\s*\(",
        "Document Write",
        "Found document.write() calls that may inject content",
        Severity.MEDIUM,
    ),
    (
        r"eval\s*\(",
        "Eval Function",
        "Found eval() calls that execute arbitrary code",
        Severity.CRITICAL,
    ),
    (
        r"new\s+Function\s*\(",
        "Function Constructor",
        "Found Function constructor that may execute arbitrary code",
        Severity.CRITICAL,
    ),
    (
        r"set(Timeout|Interval)\s*\(",
        "Timer Functions",
        "Found setTimeout or setInterval that may execute code",
        Severity.MEDIUM,
    ),
    (
        r"\balert\s*\(",
        "Alert Call",
        "Found alert() call that may indicate XSS payload execution",
        Severity.HIGH,
    ),
    (
        r"\b(confirm|prompt)\s*\(",
        "Browser Dialog Call",
        "Found confirm() or prompt() call that may indicate XSS payload execution",
        Severity.HIGH,
    ),
    (
        r"\bwindow\s*\.\s*\w+",
        "Window Property Access",
        "Found window.* property access that may indicate XSS (e.g. window.origin, window.location)",
        Severity.HIGH,
    ),
    (
        r"""\bwindow\s*\[\s*['"][^'"]+['"]\s*\]""",
        "Window Bracket Access",
        'Found window["..."] bracket notation access that may indicate obfuscated XSS',
        Severity.HIGH,
    ),
    (
        r"\bdocument\s*\.\s*(URL|location|cookie|domain|referrer|documentURI)\b",
        "Document Property Access",
        "Found access to sensitive document properties (URL, cookie, location, etc.)",
        Severity.HIGH,
    ),
    (
        r"\bdocument\s*\.\s*(createElement|createElementNS|execCommand)\s*\(",
        "Document DOM Manipulation",
        "Found document DOM manipulation that may inject malicious elements",
        Severity.MEDIUM,
    ),
    (
        r"\bPDFViewerApplication\b",
        "PDF Viewer Application Access",
        "Found reference to PDFViewerApplication (PDF.js viewer object), "
        "commonly targeted in PDF XSS attacks",
        Severity.CRITICAL,
    ),
    (
        r"\blocation\s*\.\s*(href|assign|replace|hash|search|pathname)\b",
        "Location Manipulation",
        "Found location property access that may redirect or leak data",
        Severity.HIGH,
    ),
    (
        r"\b(fetch|XMLHttpRequest|ActiveXObject)\s*\(",
        "Network Request",
        "Found network request API calls that may exfiltrate data",
        Severity.HIGH,
    ),
    (
        r"\bnavigator\s*\.\s*\w+",
        "Navigator Access",
        "Found navigator property access that may fingerprint or exfiltrate browser info",
        Severity.MEDIUM,
    ),
    (
        r"\bpostMessage\s*\(",
        "PostMessage Call",
        "Found postMessage() call that may communicate with parent/opener windows",
        Severity.MEDIUM,
    ),
]


# ---------------------------------------------------------------------------
# PDF JavaScript / viewer API patterns
# ---------------------------------------------------------------------------

_JS_INJECTION_SPECS: list[_RuleSpec] = [
    (
        r"app\.(\w+)\s*\(",
        "Acrobat API Call",
        "Found calls to Acrobat JavaScript API",
        Severity.HIGH,
    ),
    (
        r"this\.(\w+)\s*\(",
        "PDF Object Method Call",
        "Found calls to PDF object methods",
        Severity.MEDIUM,
    ),
    (
        r"\bgetField\s*\(",
        "Form Field Access",
        "Found attempts to access form fields",
        Severity.MEDIUM,
    ),
    (
        r"\bapp\.alert\s*\(",
        "Alert Dialog",
        "Found alert dialog calls",
        Severity.LOW,
    ),
    (
        r"\bapp\.execMenuItem\s*\(",
        "Execute Menu Item",
        "Found attempts to execute menu commands",
        Severity.CRITICAL,
    ),
    (
        r"\bspawn\s*\(",
        "Process Spawn",
        "Found attempts to spawn processes",
        Severity.CRITICAL,
    ),
    (
        r"\bshell\s*\.\s*\w+",
        "Shell Command",
        "Found potential shell command execution",
        Severity.CRITICAL,
    ),
    (
        r"/JavaScript",
        "PDF JavaScript Dictionary",
        "Found /JavaScript dictionary which indicates embedded scripts",
        Severity.HIGH,
    ),
    (
        r"/JS\s*(?:<|\[|\()",
        "PDF JS Entry",
        "Found /JS entry which contains JavaScript code",
        Severity.HIGH,
    ),
    (
        r"/OpenAction",
        "PDF OpenAction",
        "Found /OpenAction which can execute scripts on open",
        Severity.MEDIUM,
    ),
    (
        r"/AA\s*<<",
        "PDF Additional Actions",
        "Found /AA (Additional Actions) which can execute scripts on events",
        Severity.MEDIUM,
    ),
    (
        r"/URI\s*\([^)]*javascript:",
        "PDF JavaScript URI",
        "Found javascript: URI in PDF link",
        Severity.HIGH,
    ),
    (
        r"/Launch",
        "PDF Launch Action",
        "Found /Launch action which can execute external programs",
        Severity.CRITICAL,
    ),
    (
        r"/RichMedia",
        "PDF RichMedia",
        "Found /RichMedia which can contain Flash or other executable content",
        Severity.HIGH,
    ),
    (
        # A string operand anywhere in the (numeric-only) matrix array.
        r"/FontMatrix\s*\[[^\]\(]*\((?:\\.|[^\\)])*\)",
        "FontMatrix JavaScript Injection",
        "Found potential JavaScript injection in FontMatrix array (CVE-2024-4367)",
        Severity.CRITICAL,
    ),
]


# ---------------------------------------------------------------------------
# Form / action hijacking patterns
# ---------------------------------------------------------------------------

_FORM_INJECTION_SPECS: list[_RuleSpec] = [
    (
        r"/AcroForm",
        "PDF AcroForm Dictionary",
        "Found /AcroForm dictionary which defines interactive form fields",
        Severity.LOW,
    ),
    (
        r"/SubmitForm",
        "PDF SubmitForm Action",
        "Found /SubmitForm action which can send form data to a remote server",
        Severity.HIGH,
    ),
    (
        r"/SubmitForm[^>]{0,200}?/F\s*\(\s*(?:https?|ftp)://",
        "Form Submission To External URL",
        "Found /SubmitForm action targeting an external URL that may exfiltrate data",
        Severity.CRITICAL,
    ),
    (
        r"/ImportData",
        "PDF ImportData Action",
        "Found /ImportData action which can load field values from an external file",
        Severity.MEDIUM,
    ),
    (
        r"/ResetForm",
        "PDF ResetForm Action",
        "Found /ResetForm action which can clear user-entered form data",
        Severity.LOW,
    ),
    (
        r"/XFA\b",
        "PDF XFA Form",
        "Found /XFA form definition which can embed scripts and external bindings",
        Severity.MEDIUM,
    ),
    (
        r"\bsubmitForm\s*\(",
        "Form Submit Call",
        "Found submitForm() call that may post form data to an attacker-controlled URL",
        Severity.HIGH,
    ),
    (
        r"<form\b[^>]*\baction\s*=",
        "HTML Form Action",
        "Found HTML <form action=...> that may redirect submitted data",
        Severity.HIGH,
    ),
    (
        r"\bformaction\s*=",
        "Form Action Override",
        "Found formaction attribute that may hijack the submission target",
        Severity.HIGH,
    ),
    (
        r"""<input\b[^>]*\btype\s*=\s*["']?hidden""",
        "Hidden Input Field",
        "Found hidden <input> field that may smuggle data into a form submission",
        Severity.MEDIUM,
    ),
]


def _compile(specs: list[_RuleSpec]) -> tuple[Rule, ...]:
    return tuple(
        Rule(
            pattern=re.compile(pattern, re.IGNORECASE),
            name=name,
            description=description,
            severity=severity,
        )
        for pattern, name, description, severity in specs
    )


XSS_RULES: tuple[Rule, ...] = _compile(_XSS_SPECS)
JS_INJECTION_RULES: tuple[Rule, ...] = _compile(_JS_INJECTION_SPECS)
FORM_INJECTION_RULES: tuple[Rule, ...] = _compile(_FORM_INJECTION_SPECS)

RULE_SETS: dict[Category, tuple[Rule, ...]] = {
    Category.XSS: XSS_RULES,
    Category.JS_INJECTION: JS_INJECTION_RULES,
    Category.FORM_INJECTION: FORM_INJECTION_RULES,
}

# Fixed run order for the scanner: xss, js, form.
DETECTOR_CATEGORIES: dict[Detector, Category] = {
    Detector.XSS: Category.XSS,
    Detector.JS: Category.JS_INJECTION,
    Detector.FORM: Category.FORM_INJECTION,
}


def all_rules() -> list[tuple[Category, Rule]]:
    """Every rule paired with its category, in scan order."""
    return [
        (category, rule)
        for category, rules in RULE_SETS.items()
        for rule in rules
    ]
