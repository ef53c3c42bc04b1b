# kyc/presentation/schemas.py
from rest_framework import serializers

# ---------- Entrada de imagen ----------
class ImageInputSerializer(serializers.Serializer):
    imageBase64 = serializers.CharField(required=False, allow_blank=False,
                                        help_text="Imagen en base64 (se acepta prefijo data:image/...;base64,).")
    imageUrl = serializers.CharField(required=False, allow_blank=False,
                                     help_text="Ruta local, URI/URL S3 o URL http(s) de la imagen.")

    def validate(self, attrs):
        if not attrs.get("imageBase64") and not attrs.get("imageUrl"):
            raise serializers.ValidationError("Se requiere imageBase64 o imageUrl.")
        return attrs

# ---------- Resultado KYC ----------
class KYCResultSerializer(serializers.Serializer):
    real_prob = serializers.FloatField()
    fake_prob = serializers.FloatField()
    real_prob_geometric = serializers.FloatField()
    fake_prob_geometric = serializers.FloatField()
    selfie_id_match_prob = serializers.FloatField()
    is_above_age_threshold = serializers.BooleanField(allow_null=True)
    failure_reason = serializers.CharField()
    is_selfie_real = serializers.BooleanField()
    is_two_step = serializers.BooleanField()

class StepOutcomeSerializer(serializers.Serializer):
    ok = serializers.BooleanField()
    step = serializers.CharField()
    failure_reason = serializers.CharField(allow_null=True)
    error = serializers.CharField(allow_null=True)
    message = serializers.CharField(allow_blank=True)

class SessionStateSerializer(serializers.Serializer):
    session_id = serializers.UUIDField()
    step = serializers.CharField()
    last_outcome = StepOutcomeSerializer(allow_null=True)
    result = KYCResultSerializer(allow_null=True)
    uuid_flow = serializers.UUIDField(allow_null=True, required=False)

class SessionResponseSerializer(serializers.Serializer):
    status = serializers.CharField()
    message = serializers.CharField()
    data = SessionStateSerializer()

# ---------- Biometría ----------
class SimpleResponseSerializer(serializers.Serializer):
    status = serializers.CharField()
    message = serializers.CharField()

# ---------- Clon de video ----------
class CloneCheckRequestSerializer(serializers.Serializer):
    videoUrl = serializers.CharField(help_text="Ruta local o URI/URL S3 / http(s) del video grabado.")

class CloneFragmentSerializer(serializers.Serializer):
    index = serializers.IntegerField()
    time_offset = serializers.FloatField()
    is_picture_cloned = serializers.BooleanField()
    is_audio_cloned = serializers.BooleanField()

class CloneVerdictSerializer(serializers.Serializer):
    category = serializers.CharField()
    picture_evidence = serializers.ListField(child=serializers.IntegerField())
    audio_evidence = serializers.ListField(child=serializers.IntegerField())
    failed_channels = serializers.ListField(child=serializers.ListField())
    fragments = CloneFragmentSerializer(many=True)

class CloneCheckDataSerializer(serializers.Serializer):
    uuid_flow = serializers.UUIDField()
    verdict = CloneVerdictSerializer()

class CloneCheckResponseSerializer(serializers.Serializer):
    status = serializers.CharField()
    message = serializers.CharField()
    data = CloneCheckDataSerializer(allow_null=True)

# ---------- Flow (.txt -> JSON) ----------
class FlowLinksSerializer(serializers.Serializer):
    self = serializers.CharField()

class FlowSerializer(serializers.Serializer):
    uuid_flow = serializers.UUIDField()
    kind = serializers.CharField()
    started_at_utc = serializers.CharField()
    finished_at_utc = serializers.CharField()
    thresholds = serializers.DictField()
    result = serializers.DictField()
    _links = FlowLinksSerializer(required=False)
