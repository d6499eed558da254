"""Patient-facing WhatsApp templates (Indonesian).

Patients only ever receive one of these; internal errors never reach them.
"""

SIGNATURE = "💙 Tim PRIMA"

VERIFICATION_REQUEST = (
    "🏥 *PRIMA - Verifikasi WhatsApp*\n\n"
    "Halo {name}!\n\n"
    "Apakah Anda bersedia menerima pengingat kesehatan dari PRIMA melalui WhatsApp?\n\n"
    "*Balas dengan SALAH SATU kata ini saja:*\n"
    "✅ *YA*\n"
    "❌ *TIDAK*\n\n"
    "Pesan ini akan kadaluarsa dalam {ttl_hours} jam.\n\n"
    "Terima kasih! " + SIGNATURE
)

VERIFICATION_ACCEPTED = (
    "Terima kasih {name}! ✅\n\n"
    "Anda akan menerima pengingat dari relawan PRIMA.\n\n"
    "Untuk berhenti kapan saja, ketik: *BERHENTI*\n\n" + SIGNATURE
)

VERIFICATION_DECLINED = (
    "Baik {name}, terima kasih atas responsnya.\n\n"
    "Semoga sehat selalu! 🙏\n\n" + SIGNATURE
)

VERIFICATION_CLARIFICATION = (
    "Halo {name}, mohon balas dengan jelas:\n\n"
    "✅ *YA* atau *SETUJU* untuk menerima pengingat\n"
    "❌ *TIDAK* atau *TOLAK* untuk menolak\n\n"
    "Terima kasih! " + SIGNATURE
)

UNSUBSCRIBED = (
    "Baik {name}, kami akan berhenti mengirimkan pengingat. 🛑\n\n"
    "Semua pengingat obat telah dinonaktifkan.\n\n"
    "Jika suatu saat ingin bergabung kembali, hubungi relawan PRIMA.\n\n"
    "Semoga sehat selalu! 🙏💙"
)

CONFIRMATION_TAKEN = (
    "Terima kasih {name}! ✅\n\n"
    "Pengingat sudah dikonfirmasi selesai.\n\n" + SIGNATURE
)

CONFIRMATION_MISSED = (
    "Baik {name}, jangan lupa selesaikan pengingat Anda ya! 📝\n\n"
    "Kami akan mengingatkan lagi nanti.\n\n" + SIGNATURE
)

CONFIRMATION_LATER = (
    "Baik {name}, kami catat ya. ⏰\n\n"
    "Jangan lupa selesaikan pengingat Anda, kami akan mengingatkan lagi nanti.\n\n" + SIGNATURE
)

CONFIRMATION_UNCLEAR = (
    "Terima kasih {name}, balasan Anda sudah kami catat.\n\n"
    "Relawan PRIMA akan menindaklanjuti bila diperlukan.\n\n" + SIGNATURE
)

EMERGENCY_RECEIVED = (
    "Halo {name}, pesan darurat Anda sudah kami terima. 🚨\n\n"
    "Relawan PRIMA akan segera menghubungi Anda. "
    "Jika kondisi memburuk, segera hubungi 119 atau datang ke IGD terdekat.\n\n" + SIGNATURE
)

INQUIRY_RECEIVED = (
    "Terima kasih {name}, pesan Anda sudah kami terima.\n\n"
    "Relawan PRIMA akan membalas secepatnya.\n\n" + SIGNATURE
)


def render(template: str, **values) -> str:
    name = values.get("name") or "Bapak/Ibu"
    return template.format(**{**values, "name": name})
