from django import forms

from payments.mpesa import normalize_phone_number


class DeliveryForm(forms.Form):
    phone = forms.CharField(max_length=20)
    address = forms.CharField(max_length=255)
    city = forms.CharField(max_length=100)

    def clean_phone(self):
        phone = normalize_phone_number(self.cleaned_data.get('phone'))
        # M-Pesa only prompts full Kenyan numbers: 254 + 9 digits
        if len(phone) != 12:
            raise forms.ValidationError("Enter a valid Kenyan phone number, e.g. 0712345678")
        return phone
