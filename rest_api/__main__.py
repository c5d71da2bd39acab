from rest_api.app import main

main()
