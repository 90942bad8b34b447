"""
Localization - טקסטים למשתמש באנגלית (en) ובמראטהי (mr).

get_text מחפש לפי מפתח ושפה, נופל לאנגלית כשחסר תרגום ומחזיר
"[Missing translation: KEY]" למפתח לא מוכר. ערך יכול להיות מחרוזת
עם {0}, {1} או פונקציה שמקבלת את הפרמטרים.
"""
from typing import Any, Callable, Union
from urllib.parse import quote

from app.core.config import settings
from app.db.models.report import ReportType

SUPPORTED_LANGUAGES = ("en", "mr")
DEFAULT_LANGUAGE = "en"

# בחירת תפריט -> סוג דיווח
MENU_REPORT_TYPES: dict[str, ReportType] = {
    "1": ReportType.TRAFFIC_VIOLATION,
    "2": ReportType.TRAFFIC_CONGESTION,
    "3": ReportType.ACCIDENT,
    "4": ReportType.ROAD_DAMAGE,
    "5": ReportType.ILLEGAL_PARKING,
    "6": ReportType.TRAFFIC_SIGNAL_ISSUE,
    "7": ReportType.SUGGESTION,
}

SUGGESTION_OPTION = "7"
JOIN_TEAM_OPTION = "8"

MARATHI_REPORT_TYPES: dict[str, str] = {
    ReportType.TRAFFIC_VIOLATION.value: "वाहतूक नियम उल्लंघन",
    ReportType.TRAFFIC_CONGESTION.value: "वाहतूक कोंडी",
    ReportType.ACCIDENT.value: "अपघात",
    ReportType.ROAD_DAMAGE.value: "रस्ता खराबी",
    ReportType.ILLEGAL_PARKING.value: "अवैध पार्किंग",
    ReportType.TRAFFIC_SIGNAL_ISSUE.value: "वाहतूक सिग्नल समस्या",
    ReportType.SUGGESTION.value: "सूचना",
    ReportType.JOIN_REQUEST.value: "सामील होण्याची विनंती",
    ReportType.GENERAL_REPORT.value: "सामान्य अहवाल",
}


def report_type_label(report_type: Union[str, ReportType], language: str = DEFAULT_LANGUAGE) -> str:
    value = report_type.value if isinstance(report_type, ReportType) else str(report_type)
    if language == "mr":
        return MARATHI_REPORT_TYPES.get(value, value)
    return value


def report_type_for_option(option: str | None) -> ReportType:
    return MENU_REPORT_TYPES.get(option or "", ReportType.GENERAL_REPORT)


TranslationValue = Union[str, Callable[..., str]]

TRANSLATIONS: dict[str, dict[str, TranslationValue]] = {
    "LANGUAGE_PROMPT": {
        "en": (
            "*Welcome to Traffic Buddy!* 🚦\n\n"
            "Select your preferred language:\n"
            "1️⃣ English\n"
            "2️⃣ मराठी (Marathi)\n\n"
            "Reply with 1 or 2."
        ),
        "mr": (
            "*ट्रॅफिक बडी मध्ये आपले स्वागत आहे!* 🚦\n\n"
            "तुमची पसंतीची भाषा निवडा:\n"
            "1️⃣ इंग्रजी (English)\n"
            "2️⃣ मराठी\n\n"
            "1 किंवा 2 उत्तर द्या."
        ),
    },
    "NAME_REQUEST": {
        "en": (
            "Please share your name to continue. Your personal information will remain "
            "unknown and will not be shared with anyone."
        ),
        "mr": (
            "कृपया सुरू ठेवण्यासाठी आपले नाव शेअर करा. तुमची वैयक्तिक माहिती गोपनीय "
            "राहील आणि कोणाशीही शेअर केली जाणार नाही."
        ),
    },
    "NAME_CONFIRMATION": {
        "en": lambda name: f"Thank you, {name}!",
        "mr": lambda name: (
            f"धन्यवाद, {name}! तुमचे नाव सुरक्षित जतन केले आहे. "
            "तुमची गोपनीयता आमच्यासाठी महत्वाची आहे."
        ),
    },
    "WELCOME_MESSAGE": {
        "en": (
            "*Welcome to Traffic Buddy PCMC!* 🚦\n\n"
            "Choose an option by typing the number:\n"
            "1️⃣ Report Traffic Violation\n"
            "2️⃣ Report Traffic Congestion\n"
            "3️⃣ Report Accident\n"
            "4️⃣ Report Road Damage\n"
            "5️⃣ Report Illegal Parking\n"
            "6️⃣ Traffic Signal Information\n"
            "7️⃣ Share Suggestion\n"
            "8️⃣ Join Traffic Buddy Team\n\n"
            "Reply with a number 1-8."
        ),
        "mr": (
            "*ट्रॅफिक बडी PCMC मध्ये आपले स्वागत आहे!* 🚦\n\n"
            "नंबर टाइप करून पर्याय निवडा:\n"
            "1️⃣ वाहतूक नियम उल्लंघन नोंदवा\n"
            "2️⃣ वाहतूक कोंडी नोंदवा\n"
            "3️⃣ अपघात नोंदवा\n"
            "4️⃣ रस्ता खराबी नोंदवा\n"
            "5️⃣ अवैध पार्किंग नोंदवा\n"
            "6️⃣ वाहतूक सिग्नल माहिती\n"
            "7️⃣ सूचना शेअर करा\n"
            "8️⃣ ट्रॅफिक बडी टीममध्ये सामील व्हा\n\n"
            "1-8 क्रमांकासह उत्तर द्या."
        ),
    },
    "CAMERA_INSTRUCTIONS": {
        "en": lambda url: (
            "📸 *Click the link below to submit your report:*\n\n"
            "📱 *📷 CAPTURE & REPORT 📷*\n"
            "👇👇👇👇👇👇👇👇\n"
            f"{url}\n"
            "👆👆👆👆👆👆👆👆\n\n"
            "Tap the link above to submit your location and photo.\n"
            "Please make sure to allow location access for successful reporting.\n\n"
            "You can also reply here with a photo or description and share your location."
        ),
        "mr": lambda url: (
            "📸 *अहवाल सादर करण्यासाठी खाली दिलेल्या लिंकवर क्लिक करा:*\n\n"
            "📱 *📷 अहवाल सादर करा 📷*\n"
            "👇👇👇👇👇👇👇👇\n"
            f"{url}\n"
            "👆👆👆👆👆👆👆👆\n\n"
            "वरील लिंकवर टॅप करून, आपले स्थान आणि फोटो सादर करा.\n"
            "कृपया यशस्वी अहवाल सादर करण्यासाठी GPS स्थान प्रवेश परवानगी द्या.\n\n"
            "तुम्ही येथे फोटो किंवा वर्णन पाठवून तुमचे स्थान देखील शेअर करू शकता."
        ),
    },
    "REPORT_DETAILS_PROMPT": {
        "en": "Please send a photo or a short description of the issue, and share its location.",
        "mr": "कृपया समस्येचा फोटो किंवा थोडक्यात वर्णन पाठवा आणि त्याचे स्थान शेअर करा.",
    },
    "LOCATION_REQUEST": {
        "en": (
            "📍 Got it. Now please share the location of the incident using WhatsApp's "
            "location feature (📎 → Location)."
        ),
        "mr": (
            "📍 मिळाले. आता कृपया व्हॉट्सअॅपच्या लोकेशन सुविधेचा वापर करून (📎 → Location) "
            "घटनेचे स्थान शेअर करा."
        ),
    },
    "LOCATION_MISSING_HINT": {
        "en": (
            "We could not read a location from your message. Please share the location "
            "using 📎 → Location, or type \"menu\" to cancel."
        ),
        "mr": (
            "तुमच्या संदेशातून स्थान वाचता आले नाही. कृपया 📎 → Location वापरून स्थान शेअर करा "
            "किंवा रद्द करण्यासाठी \"menu\" टाइप करा."
        ),
    },
    "LOCATION_OUTSIDE_JURISDICTION": {
        "en": (
            "Sorry, this location is outside PCMC jurisdiction. We can only process reports "
            "within PCMC limits.\n\nType \"menu\" to return to the main menu."
        ),
        "mr": (
            "क्षमस्व, हे स्थान PCMC हद्दीबाहेर आहे. आम्ही फक्त PCMC हद्दीतील अहवालांवर "
            "प्रक्रिया करू शकतो.\n\nमुख्य मेनूकडे परत जाण्यासाठी \"menu\" टाइप करा."
        ),
    },
    "REPORT_SUBMITTED": {
        "en": lambda report_type, division, has_image=False: (
            f"Thank you! Your {report_type_label(report_type).lower()} report has been submitted "
            f"successfully and assigned to the {division} division."
            f"{' Image received and uploaded.' if has_image else ''} "
            "You will be notified when there are updates.\n\n"
            "Type \"menu\" to return to the main menu."
        ),
        "mr": lambda report_type, division, has_image=False: (
            f"धन्यवाद! तुमचा {report_type_label(report_type, 'mr')} अहवाल यशस्वीरित्या सबमिट झाला "
            f"आहे आणि {division} विभागाकडे सोपवला आहे."
            f"{' इमेज प्राप्त झाली आणि अपलोड केली गेली.' if has_image else ''} "
            "काही अपडेट असल्यास तुम्हाला कळवले जाईल.\n\n"
            "मुख्य मेनूकडे परत जाण्यासाठी \"menu\" टाइप करा."
        ),
    },
    "NOTIFICATION_FAILED": {
        "en": (
            "Sorry, we could not reach the officers of the {0} division right now, so your "
            "report was not recorded. Please try again in a few minutes."
        ),
        "mr": (
            "क्षमस्व, आम्ही सध्या {0} विभागाच्या अधिकाऱ्यांशी संपर्क साधू शकलो नाही, त्यामुळे "
            "तुमचा अहवाल नोंदवला गेला नाही. कृपया काही मिनिटांनी पुन्हा प्रयत्न करा."
        ),
    },
    "REPORT_ERROR": {
        "en": "Sorry, there was an error processing your report. Please try again later.",
        "mr": "क्षमस्व, तुमच्या अहवालावर प्रक्रिया करताना त्रुटी आली. कृपया नंतर पुन्हा प्रयत्न करा.",
    },
    "SUGGESTION_RESPONSE": {
        "en": "Thank you for your suggestion! We value your feedback and will review it soon.",
        "mr": "तुमच्या सूचनेबद्दल धन्यवाद! आम्ही तुमच्या अभिप्रायाची कदर करतो आणि लवकरच त्याचा आढावा घेऊ.",
    },
    "JOIN_FORM_LINK": {
        "en": (
            "Thank you for your interest in joining Traffic Buddy! 🚦\n\n"
            "Please fill in the application form here:\n{0}\n\n"
            "You can also reply with your details in this format:\n"
            "Name: [Your Name]\nEmail: [Your Email]\nPhone: [Your Phone]\nLocation: [Your Location]"
        ),
        "mr": (
            "ट्रॅफिक बडीमध्ये सामील होण्याच्या तुमच्या इच्छेबद्दल धन्यवाद! 🚦\n\n"
            "कृपया येथे अर्ज भरा:\n{0}\n\n"
            "तुम्ही तुमची माहिती या फॉरमॅटमध्ये देखील पाठवू शकता:\n"
            "नाव: [तुमचे नाव]\nईमेल: [तुमचा ईमेल]\nफोन: [तुमचा फोन]\nस्थान: [तुमचे स्थान]"
        ),
    },
    "JOIN_RESPONSE": {
        "en": (
            "Thank you for your interest in joining Traffic Buddy! Our team will review your "
            "information and contact you soon.\n\nType \"menu\" to return to the main menu."
        ),
        "mr": (
            "ट्रॅफिक बडीमध्ये सामील होण्याच्या तुमच्या इच्छेबद्दल धन्यवाद! आमची टीम तुमची माहिती "
            "तपासेल आणि लवकरच तुमच्याशी संपर्क साधेल.\n\n"
            "मुख्य मेनूकडे परत जाण्यासाठी \"menu\" टाइप करा."
        ),
    },
    "JOIN_APPLICATION_RECEIVED": {
        "en": (
            "Thank you, {0}! Your application to join Traffic Buddy has been received.\n\n"
            "Application ID: {1}\n\nOur team will review it and contact you soon."
        ),
        "mr": (
            "धन्यवाद, {0}! ट्रॅफिक बडीमध्ये सामील होण्याचा तुमचा अर्ज प्राप्त झाला आहे.\n\n"
            "अर्ज क्रमांक: {1}\n\nआमची टीम तो तपासेल आणि लवकरच तुमच्याशी संपर्क साधेल."
        ),
    },
    "STATUS_IN_PROGRESS": {
        "en": "🔄 Your {0} report is now being reviewed by our team. We will update you soon.",
        "mr": "🔄 तुमचा {0} अहवाल आमच्या टीमकडून आता तपासला जात आहे. आम्ही तुम्हाला लवकरच अपडेट करू.",
    },
    "STATUS_RESOLVED": {
        "en": (
            "✅ Good news! Your {0} report has been resolved.\n\nResolution details: {1}\n\n"
            "Thank you for making our roads safer!"
        ),
        "mr": (
            "✅ चांगली बातमी! तुमचा {0} अहवाल निकाली काढला गेला आहे.\n\nनिराकरण तपशील: {1}\n\n"
            "आमचे रस्ते सुरक्षित बनवण्यासाठी धन्यवाद!"
        ),
    },
    "STATUS_REJECTED": {
        "en": (
            "❌ We reviewed your {0} report, but we were unable to proceed further with it.\n\n"
            "Reason: {1}\n\nPlease feel free to submit another report if needed."
        ),
        "mr": (
            "❌ आम्ही तुमचा {0} अहवाल तपासला, परंतु आम्ही त्यावर पुढे जाऊ शकलो नाही.\n\n"
            "कारण: {1}\n\nआवश्यक असल्यास कृपया दुसरा अहवाल सबमिट करा."
        ),
    },
}


def normalize_language(language: str | None) -> str:
    return language if language in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def get_text(key: str, language: str | None = DEFAULT_LANGUAGE, *params: Any) -> str:
    """טקסט מתורגם לפי מפתח ושפה"""
    entry = TRANSLATIONS.get(key)
    if entry is None:
        return f"[Missing translation: {key}]"

    translation = entry.get(language or DEFAULT_LANGUAGE) or entry.get(DEFAULT_LANGUAGE)
    if translation is None:
        return f"[Missing translation: {key}.{language}]"

    if callable(translation):
        return translation(*params)

    result = translation
    for index, param in enumerate(params):
        result = result.replace(f"{{{index}}}", str(param))
    return result


def get_main_menu(language: str | None) -> str:
    return get_text("WELCOME_MESSAGE", language)


def build_capture_url(user_handle: str, option: str, link_id: str) -> str:
    """קישור לדף הצילום. הצעות (7) נפתחות בדף ייעודי"""
    page = "suggestion-capture.html" if option == SUGGESTION_OPTION else "capture.html"
    return (
        f"{settings.SERVER_URL}/{page}"
        f"?userId={quote(user_handle, safe='')}&reportType={option}&linkId={link_id}"
    )


def build_join_form_url(user_handle: str, session_id: str) -> str:
    return f"{settings.SERVER_URL}/join-team.html?userId={quote(user_handle, safe='')}&sessionId={session_id}"


def build_officer_notification(
    division_name: str,
    report_type: str,
    address: str | None,
    description: str | None,
    public_id: str,
) -> str:
    """הודעה לקצין - באנגלית בלבד, עם קישור לסגירת הדיווח"""
    return (
        f"🚨 New Traffic Report in {division_name}\n\n"
        f"Type: {report_type}\n"
        f"Location: {address or 'See map link'}\n"
        f"Description: {description or 'No description provided'}\n\n"
        f"To resolve this issue, click: {settings.SERVER_URL}/resolve.html?id={public_id}"
    )
